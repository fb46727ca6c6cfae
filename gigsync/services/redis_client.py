# gigsync/services/redis_client.py
"""
Pooled async Redis client.

Backs the fetch correlation records (keys with a TTL) and the readiness
check. The message queues live in arq, which opens its own pool.

Commands never raise. A failed command is logged and reported through the
return value (False or None); callers that must not lose a
write turn that into their own error.
"""

from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 20


def build_redis_url() -> str:
    """REDIS_URL, or a native TLS URL derived from the Upstash REST settings."""
    if settings.REDIS_URL:
        return settings.REDIS_URL

    rest_url = (settings.UPSTASH_REDIS_REST_URL or "").strip()
    host = urlparse(rest_url).hostname or urlparse(f"https://{rest_url}").hostname
    token = settings.UPSTASH_REDIS_REST_TOKEN
    if not host or not token:
        raise ValueError("Either REDIS_URL or UPSTASH_REDIS_REST_URL/TOKEN must be configured")
    return f"rediss://default:{token}@{host}:6379"


class FastRedisClient:
    def __init__(self):
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        try:
            redis_url = build_redis_url()
            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=MAX_CONNECTIONS,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e), error_type=type(e).__name__)
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info(
            "Redis client initialized",
            host=urlparse(redis_url).hostname,
            max_connections=MAX_CONNECTIONS,
        )

    async def close(self) -> None:
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._initialized = False
        logger.info("Redis client closed")

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def _command(
        self,
        command: str,
        key: str,
        default: Any,
        call: Callable[[redis.Redis], Awaitable[Any]],
    ) -> Any:
        try:
            await self._ensure_initialized()
            return await call(self.client)
        except Exception as e:
            logger.error(
                "Redis command failed",
                command=command,
                key=key[:40],
                error=str(e),
                error_type=type(e).__name__,
            )
            return default

    async def ping(self) -> bool:
        return bool(await self._command("PING", "", False, lambda c: c.ping()))

    # Keys

    async def get(self, key: str) -> str | None:
        return await self._command("GET", key, None, lambda c: c.get(key)) or None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if ttl_s:
            result = await self._command("SETEX", key, False, lambda c: c.setex(key, ttl_s, value))
        else:
            result = await self._command("SET", key, False, lambda c: c.set(key, value))
        return bool(result)

    async def delete(self, key: str) -> bool:
        return await self._command("DEL", key, 0, lambda c: c.delete(key)) > 0


# Global instance
fast_redis = FastRedisClient()
