"""
Fetch trigger timer.

Every FETCH_TRIGGER_INTERVAL_SECONDS a PlatformDataFetchTriggerMessage is
sent to the fetch_trigger queue. The message pump consumes it and runs one
fetch scheduler pass, so at most one pass runs per pump even when triggers
pile up.
"""

import asyncio

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.messages import FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage
from gigsync.services.messaging.message_bus import MessageBus, message_bus

logger = get_logger(__name__)


async def send_fetch_trigger(bus: MessageBus | None = None, source: str = "timer") -> str:
    """Queue one fetch trigger. Returns the message id."""
    bus = bus or message_bus
    envelope = await bus.send(FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage(source=source))
    logger.info("Fetch trigger sent", message_id=envelope.id, source=source)
    return envelope.id


async def run_fetch_trigger_loop(bus: MessageBus | None = None):
    """Send a fetch trigger on a fixed interval until cancelled."""
    logger.info(
        "Starting fetch trigger scheduler",
        interval_seconds=settings.FETCH_TRIGGER_INTERVAL_SECONDS,
    )
    while True:
        try:
            await send_fetch_trigger(bus)
            await asyncio.sleep(settings.FETCH_TRIGGER_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            logger.info("Fetch trigger scheduler stopped")
            raise
        except Exception as e:
            logger.error(
                "Error in fetch trigger scheduler", error=str(e), error_type=type(e).__name__
            )
            # Wait a bit before retrying to avoid tight error loops
            await asyncio.sleep(60)


async def start_fetch_trigger_scheduler():
    await message_bus.connect()
    try:
        await run_fetch_trigger_loop()
    finally:
        await message_bus.close()
