"""
arq job functions and workers for the message pump.

Every logical queue gets one arq Worker with a single job function named
after the queue. The worker runs one job at a time, so a queue's messages are
handled in the order they became due. The job function rebuilds the
MessageEnvelope, binds its ids to the log context and calls the queue's
handler.

A handler that raises is retried by arq (``Retry``) after
FAILED_MESSAGE_DEFER_SECONDS. Its HANDLER_MAX_FAILURES-th failure moves the
message to the error queue instead. A job whose worker died mid-run is picked
up again by arq once its in-progress marker lapses.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from arq import Retry
from arq.connections import RedisSettings
from arq.worker import Function, Worker, func
from pydantic import BaseModel

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import (
    bind_message_context,
    clear_message_context,
    get_logger,
)
from gigsync.services.messaging.message_bus import (
    MessageBus,
    MessageContext,
    MessageEnvelope,
    message_bus,
)

logger = get_logger(__name__)

MessageHandler = Callable[[BaseModel, MessageContext], Awaitable[object]]

# Job results (returned strings) are only kept for inspection
JOB_RESULT_TTL_SECONDS = 3600


async def _handle_failure(
    bus: MessageBus, envelope: MessageEnvelope, error: Exception, attempt: int
) -> None:
    logger.error(
        "Message handler failed",
        attempt=attempt,
        max_failures=settings.HANDLER_MAX_FAILURES,
        error=str(error),
        error_type=type(error).__name__,
        exc_info=True,
    )

    if attempt >= settings.HANDLER_MAX_FAILURES:
        await bus.forward_to_error(
            envelope, f"Handler failed {attempt} times: {type(error).__name__}: {error}"
        )
        return

    raise Retry(defer=settings.FAILED_MESSAGE_DEFER_SECONDS) from error


def queue_job(queue: str, handler: MessageHandler, bus: MessageBus | None = None) -> Function:
    """The arq job function that feeds one queue's messages to its handler."""

    async def run(ctx: dict[str, Any], payload: Any) -> str:
        active_bus = bus or message_bus
        attempt = ctx.get("job_try") or 1

        try:
            envelope = MessageEnvelope.model_validate(payload)
        except ValueError as e:
            logger.error("Unreadable message moved to error queue", queue=queue, error=str(e))
            await active_bus.forward_to_error(
                MessageEnvelope(type="Unreadable", queue=queue, body={"raw": repr(payload)[:2000]}),
                f"Unreadable message: {e}",
            )
            return "unreadable"

        bind_message_context(
            message_id=envelope.id, queue=queue, message_type=envelope.type, attempt=attempt
        )
        try:
            try:
                message = envelope.decode()
            except ValueError as e:
                logger.error("Message body does not match its type", error=str(e))
                await active_bus.forward_to_error(envelope, f"Undecodable message: {e}")
                return "undecodable"

            start_time = time.time()
            try:
                await handler(message, MessageContext(envelope=envelope, bus=active_bus, attempt=attempt))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await _handle_failure(active_bus, envelope, e, attempt)
                return "dead_lettered"

            logger.debug("Message handled", duration_ms=round((time.time() - start_time) * 1000, 2))
            return "handled"
        finally:
            clear_message_context()

    run.__qualname__ = run.__name__ = f"handle_{queue}"
    # Dead-lettering happens on the last allowed try, before arq would fail the job itself
    return func(run, name=queue, max_tries=settings.HANDLER_MAX_FAILURES)


def build_queue_worker(
    queue: str, handler: MessageHandler, redis_settings: RedisSettings, bus: MessageBus | None = None
) -> Worker:
    return Worker(
        functions=[queue_job(queue, handler, bus)],
        queue_name=settings.queue_key(queue),
        redis_settings=redis_settings,
        max_jobs=1,
        poll_delay=settings.WORKER_POLL_DELAY_SECONDS,
        keep_result=JOB_RESULT_TTL_SECONDS,
        # Signals are handled once for the whole process by gigsync-worker
        handle_signals=False,
    )
