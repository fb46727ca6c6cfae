# gigsync/db/helpers.py
"""
Query helpers for the document store.

Every psycopg error is wrapped in DatabaseError. Operational errors (lost
connection, server restart) are flagged recoverable so ``with_db_retry`` can
try them again; anything else is permanent.
"""

import asyncio
import functools
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from gigsync.db.pool import db_pool
from gigsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    connection: psycopg.AsyncConnection | None,
) -> AsyncGenerator[psycopg.AsyncCursor, None]:
    if connection is not None:
        async with connection.cursor() as cur:
            yield cur
        return

    async with db_pool.connection() as conn:
        async with conn.cursor() as cur:
            yield cur


def _wrap_error(e: psycopg.Error, operation: str, query: str) -> DatabaseError:
    logger.error(
        "Document query failed",
        operation=operation,
        query=" ".join(query.split())[:100],
        error=str(e),
        error_type=type(e).__name__,
    )
    return DatabaseError(
        f"Query failed: {e}",
        operation=operation,
        recoverable=isinstance(e, psycopg.OperationalError),
    )


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    try:
        async with _cursor(connection) as cur:
            await cur.execute(query, params)
            return await cur.fetchone()
    except psycopg.Error as e:
        raise _wrap_error(e, "fetch_one", query) from e


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    try:
        async with _cursor(connection) as cur:
            await cur.execute(query, params)
            return await cur.fetchall()
    except psycopg.Error as e:
        raise _wrap_error(e, "fetch_all", query) from e


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a document read on recoverable DatabaseErrors.

    Waits base_delay, 2 * base_delay, 4 * base_delay ... between attempts.
    Permanent errors and the last failure propagate to the caller.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not e.recoverable or attempt >= max_retries:
                        logger.error(
                            "Document read gave up",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            recoverable=e.recoverable,
                            error=str(e),
                        )
                        raise

                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Document read failed, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
