"""
Message bus over arq.

Each logical queue is an arq queue consumed by one arq Worker, whose single
job function carries the queue's name (see queue_worker.py). A message
travels as a MessageEnvelope dumped to a dict, so its headers (retry
counters, error reasons) survive redeliveries. Delays are arq deferred jobs.
The error queue has no worker: dead letters wait there for an operator.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from arq.connections import ArqRedis, RedisSettings, create_pool
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.user_domain import utc_now
from gigsync.models.messages import MESSAGE_TYPES
from gigsync.services.messaging.retry_policy import BackoffAction, BackoffDecision, BackoffPolicy
from gigsync.services.redis_client import build_redis_url

logger = get_logger(__name__)

ERROR_REASON_HEADER = "gigsync-error-reason"
SOURCE_QUEUE_HEADER = "gigsync-source-queue"


class MessageBusError(Exception):
    """Raised when a message could not be handed to Redis."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class MessageEnvelope(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str
    queue: str
    body: dict[str, Any]
    headers: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def wrap(
        cls, queue: str, message: BaseModel, headers: dict[str, str] | None = None
    ) -> "MessageEnvelope":
        return cls(
            type=type(message).__name__,
            queue=queue,
            body=message.model_dump(mode="json"),
            headers=dict(headers or {}),
        )

    def decode(self) -> BaseModel:
        message_type = MESSAGE_TYPES.get(self.type)
        if message_type is None:
            raise ValueError(f"Unknown message type '{self.type}'")
        return message_type.model_validate(self.body)

    def to_payload(self) -> dict[str, Any]:
        """The job argument arq stores for this envelope."""
        return self.model_dump(mode="json")


def build_redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(build_redis_url())


class MessageBus:
    def __init__(self, pool: ArqRedis | None = None, redis_settings: RedisSettings | None = None):
        self._pool = pool
        self._redis_settings = redis_settings

    async def connect(self) -> ArqRedis:
        if self._pool is None:
            self._pool = await create_pool(self._redis_settings or build_redis_settings())
            logger.info("Message bus connected")
        return self._pool

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        try:
            await pool.aclose()
        except RedisError as e:
            logger.error("Error closing message bus", error=str(e))
        logger.info("Message bus closed")

    async def ping(self) -> bool:
        try:
            pool = await self.connect()
            return bool(await pool.ping())
        except (RedisError, OSError) as e:
            logger.error("Message bus ping failed", error=str(e), error_type=type(e).__name__)
            return False

    async def _enqueue(
        self,
        envelope: MessageEnvelope,
        operation: str,
        defer_by: float | None = None,
        expires: int | None = None,
    ) -> None:
        try:
            pool = await self.connect()
            job = await pool.enqueue_job(
                envelope.queue,
                envelope.to_payload(),
                _queue_name=settings.queue_key(envelope.queue),
                _defer_by=defer_by,
                _expires=expires,
            )
        except (RedisError, OSError) as e:
            raise MessageBusError(
                f"Failed to {operation} {envelope.type} on {envelope.queue}: {e}",
                operation=operation,
            ) from e

        # arq returns None when a job with the same id already exists
        if job is None:
            raise MessageBusError(
                f"arq refused {envelope.type} on {envelope.queue}", operation=operation
            )

    async def send(
        self, queue: str, message: BaseModel, headers: dict[str, str] | None = None
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.wrap(queue, message, headers)
        await self.send_envelope(envelope)
        return envelope

    async def send_envelope(self, envelope: MessageEnvelope) -> None:
        await self._enqueue(envelope, "send")
        logger.debug("Message sent", queue=envelope.queue, message_type=envelope.type, message_id=envelope.id)

    async def defer(
        self,
        queue: str,
        message: BaseModel,
        delay_seconds: float,
        headers: dict[str, str] | None = None,
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.wrap(queue, message, headers)
        await self.defer_envelope(envelope, delay_seconds)
        return envelope

    async def defer_envelope(self, envelope: MessageEnvelope, delay_seconds: float) -> None:
        if delay_seconds <= 0:
            await self.send_envelope(envelope)
            return

        await self._enqueue(envelope, "defer", defer_by=delay_seconds)
        logger.debug(
            "Message deferred",
            queue=envelope.queue,
            message_type=envelope.type,
            message_id=envelope.id,
            delay_seconds=delay_seconds,
        )

    async def forward_to_error(self, envelope: MessageEnvelope, reason: str) -> None:
        """Move a message to the dead-letter queue, recording why and where it came from."""
        headers = dict(envelope.headers)
        headers[ERROR_REASON_HEADER] = reason
        headers[SOURCE_QUEUE_HEADER] = envelope.queue
        dead_letter = envelope.model_copy(
            update={"queue": settings.ERROR_QUEUE_NAME, "headers": headers}
        )
        await self._enqueue(
            dead_letter, "dead-letter", expires=settings.ERROR_QUEUE_RETENTION_SECONDS
        )
        logger.warning(
            "Message forwarded to error queue",
            message_type=envelope.type,
            message_id=envelope.id,
            source_queue=envelope.queue,
            reason=reason,
        )

    async def defer_with_exponential_backoff(
        self, envelope: MessageEnvelope, policy: BackoffPolicy
    ) -> BackoffDecision:
        """
        Redeliver a failed message later, or dead-letter it once retries run out.

        The incremented retry count is written to the redelivered envelope's headers.
        """
        decision = policy.next_step(envelope.headers)

        if decision.action == BackoffAction.DEAD_LETTER:
            logger.error(
                "Message exceeded max retries, dead-lettering",
                message_type=envelope.type,
                message_id=envelope.id,
                retries=decision.attempt,
                max_retries=policy.max_retries,
            )
            await self.forward_to_error(
                envelope, f"Exceeded max retries ({policy.max_retries})"
            )
            return decision

        retry = envelope.model_copy(update={"headers": decision.headers})
        await self.defer_envelope(retry, decision.delay_seconds)
        logger.info(
            "Message redelivery scheduled",
            message_type=envelope.type,
            message_id=envelope.id,
            attempt=decision.attempt,
            delay_seconds=decision.delay_seconds,
        )
        return decision


@dataclass
class MessageContext:
    """What a handler knows about the message it is processing."""

    envelope: MessageEnvelope
    bus: MessageBus
    # arq's job_try: 1 on first delivery, higher after a handler failure
    attempt: int = 1

    @property
    def headers(self) -> dict[str, str]:
        return self.envelope.headers

    @property
    def message_id(self) -> str:
        return self.envelope.id

    async def forward_to_error(self, reason: str) -> None:
        await self.bus.forward_to_error(self.envelope, reason)

    async def defer_local(
        self, delay_seconds: float, additional_headers: dict[str, str] | None = None
    ) -> None:
        """Redeliver the current message to its own queue after a delay."""
        headers = dict(self.envelope.headers)
        headers.update(additional_headers or {})
        await self.bus.defer_envelope(
            self.envelope.model_copy(update={"headers": headers}), delay_seconds
        )


# Global instance
message_bus = MessageBus()
