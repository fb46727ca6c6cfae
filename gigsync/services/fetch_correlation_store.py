"""
Fetch correlation store.

The gig data platform answers a fetch request asynchronously, identified only
by the request id it handed back. Before the callback arrives we remember
which user, platform and sync log the request belongs to, in Redis with a TTL
so abandoned requests expire on their own.
"""

from pydantic import BaseModel, ValidationError

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

CORRELATION_KEY_PREFIX = "fetch_correlation"


class FetchCorrelationError(Exception):
    """Raised when a correlation entry cannot be written."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class FetchCorrelation(BaseModel):
    request_id: str
    user_id: str
    platform_id: str
    sync_log_id: str | None = None


class FetchCorrelationStore:
    """Redis-backed request id -> (user, platform, sync log) map."""

    def __init__(self, redis_client: FastRedisClient | None = None, ttl_seconds: int | None = None):
        self.redis = redis_client or fast_redis
        self.ttl_seconds = ttl_seconds or settings.CORRELATION_TTL_SECONDS

    def _redis_key(self, request_id: str) -> str:
        return f"{CORRELATION_KEY_PREFIX}:{request_id}"

    async def register(
        self,
        request_id: str,
        user_id: str,
        platform_id: str,
        sync_log_id: str | None = None,
    ) -> FetchCorrelation:
        """
        Remember an outstanding fetch request.

        Raises:
            FetchCorrelationError: If the entry could not be stored
        """
        if not request_id:
            raise FetchCorrelationError(
                "Cannot register a correlation without a request id",
                operation="register",
                recoverable=False,
            )

        correlation = FetchCorrelation(
            request_id=request_id,
            user_id=user_id,
            platform_id=platform_id,
            sync_log_id=sync_log_id,
        )
        stored = await self.redis.set_with_ttl(
            self._redis_key(request_id), correlation.model_dump_json(), self.ttl_seconds
        )
        if not stored:
            logger.error(
                "Failed to store fetch correlation",
                request_id=request_id,
                user_id=user_id,
                platform_id=platform_id,
            )
            raise FetchCorrelationError(
                f"Failed to store correlation for request {request_id}", operation="register"
            )

        logger.debug(
            "Fetch correlation registered",
            request_id=request_id,
            user_id=user_id,
            platform_id=platform_id,
            ttl_seconds=self.ttl_seconds,
        )
        return correlation

    async def lookup(self, request_id: str) -> FetchCorrelation | None:
        """The correlation for a request id, or None if unknown or expired."""
        if not request_id:
            return None

        raw = await self.redis.get(self._redis_key(request_id))
        if raw is None:
            return None

        try:
            return FetchCorrelation.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Corrupt fetch correlation entry", request_id=request_id, error=str(e))
            return None

    async def release(self, request_id: str) -> bool:
        """Forget a correlation once its callback has been processed."""
        deleted = await self.redis.delete(self._redis_key(request_id))
        if deleted:
            logger.debug("Fetch correlation released", request_id=request_id)
        return deleted

    async def health_check(self) -> dict:
        try:
            healthy = await self.redis.ping()
            return {
                "healthy": healthy,
                "service": "fetch_correlation_store",
                "ttl_seconds": self.ttl_seconds,
            }
        except Exception as e:
            logger.error("Fetch correlation store health check failed", error=str(e))
            return {"healthy": False, "service": "fetch_correlation_store", "error": str(e)}


# Global instance
fetch_correlation_store = FetchCorrelationStore()
