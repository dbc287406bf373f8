"""FastAPI application entry point.

This module wires together the API routers, configures middleware and
startup tasks, and exposes the ASGI application object used by the
server.
"""

import os
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from family_rewards.routes import (
    auth,
    children,
    tasks,
    rewards,
    notifications,
    families,
    sync,
)
from family_rewards.database import create_db_and_tables, async_session
from family_rewards.errors import StarEngineError
from family_rewards.ledger import reconcile
from family_rewards.ratelimit import client_key, limiter

# Basic logging configuration.  The log level can be controlled with an
# environment variable so deployments can adjust verbosity without code
# changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

app = FastAPI(title="Family Rewards")

# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    """Reject clients that exceed the per-window request allowance."""

    peer = request.client.host if request.client else None
    key = client_key(request.headers, peer)
    retry_after = limiter.hit(key)
    if retry_after is not None:
        logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
        return JSONResponse(
            status_code=429,
            content={
                "code": "rate_limited",
                "message": "Too many requests. Please try again later.",
            },
            headers={"Retry-After": str(retry_after)},
        )
    return await call_next(request)


@app.on_event("startup")
async def on_startup():
    """Initialize the database and repair half-applied transitions."""

    await create_db_and_tables()
    async with async_session() as session:
        await reconcile(session)


app.include_router(auth.router)
app.include_router(children.router)
app.include_router(tasks.router)
app.include_router(rewards.router)
app.include_router(notifications.router)
app.include_router(families.router)
app.include_router(sync.router)


@app.get("/")
async def read_root():
    return {"message": "Welcome to Family Rewards API"}


@app.exception_handler(StarEngineError)
async def star_engine_exception_handler(request: Request, exc: StarEngineError):
    logger.info("%s on %s: %s", exc.code, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
