"""
Internal endpoints used by operators and the gig data platform.

- POST /internal/fetch-trigger: queue a fetch scheduler pass now
- POST /internal/gig-platform/callback: accept a data-update callback and
  queue it for the callback handler
"""

from fastapi import APIRouter, HTTPException, status

from gigsync.infrastructure.observability.logging import get_logger
from gigsync.jobs.fetch_trigger_job import send_fetch_trigger
from gigsync.models.api.gig_platform_api import PlatformUserUpdateDataMessage
from gigsync.models.messages import GIG_PLATFORM_CALLBACK_QUEUE
from gigsync.services.messaging.message_bus import MessageBusError, message_bus

logger = get_logger(__name__)

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.post("/fetch-trigger", status_code=status.HTTP_202_ACCEPTED)
async def trigger_fetch():
    try:
        message_id = await send_fetch_trigger(source="api")
    except MessageBusError as e:
        logger.error("Could not queue fetch trigger", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Fetch trigger could not be queued",
        ) from e
    return {"queued": True, "message_id": message_id}


@router.post("/gig-platform/callback", status_code=status.HTTP_202_ACCEPTED)
async def gig_platform_callback(message: PlatformUserUpdateDataMessage):
    """Queue a gig data platform callback. The payload uses camelCase keys."""
    try:
        envelope = await message_bus.send(GIG_PLATFORM_CALLBACK_QUEUE, message)
    except MessageBusError as e:
        logger.error(
            "Could not queue gig platform callback",
            request_id=message.request_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Callback could not be queued",
        ) from e

    logger.info(
        "Gig platform callback accepted",
        request_id=message.request_id,
        result_type=message.result_type.value,
        message_id=envelope.id,
    )
    return {"queued": True, "message_id": envelope.id}
