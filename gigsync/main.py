"""
gigsync API: health checks and the internal trigger/callback endpoints.

The lifespan opens the document database, Redis and the message bus before
serving and closes them in reverse order on shutdown.
"""

import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from gigsync.config import settings
from gigsync.db.document_store import document_store
from gigsync.db.pool import db_pool
from gigsync.infrastructure.observability.logging import get_logger, setup_logging
from gigsync.routes import health, internal
from gigsync.services.messaging.message_bus import message_bus
from gigsync.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


async def _close_all(closers: list[tuple[str, Callable[[], Awaitable[None]]]]) -> list[str]:
    """Run closers last-opened first. Returns the errors, one per failed service."""
    errors = []
    for name, close in reversed(closers):
        try:
            await close()
        except Exception as e:
            logger.error("Error closing service", service=name, error=str(e))
            errors.append(f"{name}: {e}")
    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("gigsync API starting", environment=settings.environment, debug=settings.debug)

    closers: list[tuple[str, Callable[[], Awaitable[None]]]] = []
    try:
        await db_pool.initialize()
        closers.append(("database_pool", db_pool.close))
        await document_store.ensure_schema()

        await fast_redis.initialize()
        closers.append(("redis", fast_redis.close))

        await message_bus.connect()
        closers.append(("message_bus", message_bus.close))
    except Exception as e:
        logger.error(
            "Failed to initialize services",
            error=str(e),
            initialized=[name for name, _ in closers],
        )
        await _close_all(closers)
        raise

    logger.info("gigsync API ready", services=[name for name, _ in closers])

    yield

    logger.info("gigsync API shutting down")
    errors = await _close_all(closers)
    if errors:
        logger.warning("Some services had shutdown errors", errors=errors)


app = FastAPI(
    title="gigsync",
    description="Gig platform connection sync and webhook notification service",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(internal.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag the request's log lines with a request id and log its timing."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    started = time.perf_counter()

    with structlog.contextvars.bound_contextvars(request_id=request_id):
        response = await call_next(request)
        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )

    response.headers["X-Request-ID"] = request_id
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
