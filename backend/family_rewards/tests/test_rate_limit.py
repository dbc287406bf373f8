"""Tests for the fixed-window request limiter."""

import asyncio
import pathlib
import sys

from httpx import AsyncClient, ASGITransport

# Allow importing the family_rewards package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from family_rewards.main import app
from family_rewards.ratelimit import RateLimiter, client_key, limiter


def test_limiter_counts_per_window():
    now = [0.0]
    rl = RateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])
    assert rl.hit("a") is None
    assert rl.hit("a") is None
    assert rl.hit("a") == 60
    assert rl.hit("b") is None

    now[0] = 45.0
    assert rl.hit("a") == 15

    now[0] = 60.0
    assert rl.hit("a") is None


def test_client_key_prefers_first_forwarded_hop():
    assert client_key({"x-forwarded-for": "10.0.0.1, 172.16.0.2"}, "127.0.0.1") == "10.0.0.1"
    assert client_key({"x-real-ip": "10.0.0.9"}, "127.0.0.1") == "10.0.0.9"
    assert client_key({}, "127.0.0.1") == "127.0.0.1"
    assert client_key({}, None) == "unknown"


def test_requests_over_the_limit_get_429():
    async def run():
        limiter.reset()
        original = limiter.max_requests
        limiter.max_requests = 3
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                headers = {"X-Forwarded-For": "203.0.113.5"}
                for _ in range(3):
                    resp = await client.get("/", headers=headers)
                    assert resp.status_code == 200
                resp = await client.get("/", headers=headers)
                assert resp.status_code == 429
                assert resp.json()["code"] == "rate_limited"
                assert int(resp.headers["Retry-After"]) >= 1

                # A different client is counted separately
                resp = await client.get("/", headers={"X-Forwarded-For": "203.0.113.6"})
                assert resp.status_code == 200
        finally:
            limiter.max_requests = original
            limiter.reset()

    asyncio.run(run())
