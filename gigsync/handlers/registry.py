"""Which handler consumes which queue in the message pump."""

from gigsync.handlers.connection_removed_handler import connection_removed_handler
from gigsync.handlers.data_fetch_complete_handler import data_fetch_complete_handler
from gigsync.handlers.email_verification_notification_handler import (
    email_verification_notification_handler,
)
from gigsync.handlers.fetch_request_handler import fetch_request_handler
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.integrations.gig_platform.callback_handler import gig_platform_callback_handler
from gigsync.models.messages import (
    CONNECTION_REMOVED_QUEUE,
    CONNECTION_UPDATE_NOTIFY_QUEUE,
    EMAIL_VERIFICATION_NOTIFY_QUEUE,
    FETCH_COMPLETE_QUEUE,
    FETCH_TRIGGER_QUEUE,
    GIG_PLATFORM_CALLBACK_QUEUE,
    PLATFORM_FETCH_REQUEST_QUEUE,
    PlatformConnectionUpdateNotificationMessage,
    PlatformDataFetchTriggerMessage,
)
from gigsync.services.fetch_scheduler import fetch_scheduler
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.messaging.queue_worker import MessageHandler
from gigsync.services.notification_dispatcher import notification_dispatcher

logger = get_logger(__name__)


async def handle_fetch_trigger(message: PlatformDataFetchTriggerMessage, context: MessageContext) -> dict:
    logger.info("Fetch trigger received", source=message.source)
    return await fetch_scheduler.run_once()


async def handle_connection_update(
    message: PlatformConnectionUpdateNotificationMessage, context: MessageContext
):
    return await notification_dispatcher.dispatch(message, context)


QUEUE_HANDLERS: dict[str, MessageHandler] = {
    FETCH_TRIGGER_QUEUE: handle_fetch_trigger,
    PLATFORM_FETCH_REQUEST_QUEUE: fetch_request_handler.handle,
    FETCH_COMPLETE_QUEUE: data_fetch_complete_handler.handle,
    CONNECTION_REMOVED_QUEUE: connection_removed_handler.handle,
    CONNECTION_UPDATE_NOTIFY_QUEUE: handle_connection_update,
    GIG_PLATFORM_CALLBACK_QUEUE: gig_platform_callback_handler.handle,
    EMAIL_VERIFICATION_NOTIFY_QUEUE: email_verification_notification_handler.handle,
}
