"""Fixed-window request limiter keyed by client address."""

import math
import os
import time

RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "100"))
RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))


def client_key(headers, peer: str | None) -> str:
    """First ``X-Forwarded-For`` hop when behind a proxy, else the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or peer or "unknown"


class RateLimiter:
    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock=time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        # key -> (count, window reset time)
        self._windows: dict[str, tuple[int, float]] = {}

    def hit(self, key: str) -> int | None:
        """Count one request; return seconds to wait if it is over the limit."""
        now = self._clock()
        count, reset_at = self._windows.get(key, (0, 0.0))
        if now >= reset_at:
            self._prune(now)
            count, reset_at = 0, now + self.window_seconds
        count += 1
        self._windows[key] = (count, reset_at)
        if count > self.max_requests:
            return max(1, math.ceil(reset_at - now))
        return None

    def _prune(self, now: float) -> None:
        for key in [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]:
            del self._windows[key]

    def reset(self) -> None:
        self._windows.clear()


limiter = RateLimiter()
