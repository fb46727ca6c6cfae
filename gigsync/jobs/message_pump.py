"""
Message pump: one arq worker per queue, all in one process.

Cancelling the pump cancels and closes every worker.
"""

import asyncio
from contextlib import asynccontextmanager

from arq.connections import RedisSettings
from arq.worker import Worker

from gigsync.db.document_store import document_store
from gigsync.db.pool import db_pool
from gigsync.handlers.email_verification_notification_handler import (
    email_verification_notification_handler,
)
from gigsync.handlers.registry import QUEUE_HANDLERS
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.services.messaging.message_bus import build_redis_settings, message_bus
from gigsync.services.messaging.queue_worker import MessageHandler, build_queue_worker
from gigsync.services.notification_dispatcher import notification_dispatcher
from gigsync.services.redis_client import fast_redis

logger = get_logger(__name__)


def build_workers(
    handlers: dict[str, MessageHandler] | None = None,
    redis_settings: RedisSettings | None = None,
) -> list[Worker]:
    handlers = handlers if handlers is not None else QUEUE_HANDLERS
    redis_settings = redis_settings or build_redis_settings()
    return [
        build_queue_worker(queue, handler, redis_settings) for queue, handler in handlers.items()
    ]


async def run_message_pump(workers: list[Worker] | None = None) -> None:
    workers = workers if workers is not None else build_workers()
    tasks = [
        asyncio.create_task(worker.main(), name=f"worker:{worker.queue_name}")
        for worker in workers
    ]

    logger.info("Message pump running", queues=[worker.queue_name for worker in workers])
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for worker in workers:
            await worker.close()
        logger.info(
            "Message pump stopped",
            complete=sum(worker.jobs_complete for worker in workers),
            retried=sum(worker.jobs_retried for worker in workers),
            failed=sum(worker.jobs_failed for worker in workers),
        )


@asynccontextmanager
async def pump_resources():
    """Open the database, Redis and the message bus; close them last-opened first."""
    await db_pool.initialize()
    try:
        await fast_redis.initialize()
        try:
            await message_bus.connect()
            try:
                await document_store.ensure_schema()
                yield
            finally:
                await notification_dispatcher.close()
                await email_verification_notification_handler.close()
                await message_bus.close()
        finally:
            await fast_redis.close()
    finally:
        await db_pool.close()


async def start_message_pump():
    """Pump messages until cancelled."""
    async with pump_resources():
        await run_message_pump()
