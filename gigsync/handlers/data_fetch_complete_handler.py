"""Applies a finished data fetch: stores the data, marks the connection synced, notifies subscribers."""

from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.catalog_domain import Platform
from gigsync.models.domain.enums import DataSyncStepState, DataSyncStepType
from gigsync.models.domain.user_domain import User
from gigsync.models.messages import DataFetchCompleteMessage
from gigsync.services.app_notification_service import (
    AppNotificationService,
    app_notification_service,
)
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.platform_data_service import PlatformDataService, platform_data_service
from gigsync.services.sync_log_service import SyncLogService, make_step, sync_log_service

logger = get_logger(__name__)


class DataFetchCompleteHandler:
    def __init__(
        self,
        session_factory=open_session,
        platform_data: PlatformDataService | None = None,
        notifications: AppNotificationService | None = None,
        sync_logs: SyncLogService | None = None,
    ):
        self.session_factory = session_factory
        self.platform_data = platform_data or platform_data_service
        self.notifications = notifications or app_notification_service
        self.sync_logs = sync_logs or sync_log_service

    async def handle(self, message: DataFetchCompleteMessage, context: MessageContext) -> bool:
        """Returns False when there was nothing to apply."""
        session = self.session_factory()

        user = await session.load(User, message.user_id)
        connection = user.find_active_connection(message.platform_id) if user else None
        if connection is None:
            logger.warning(
                "Platform connection gone before data fetch completed, ignoring result",
                user_id=message.user_id,
                platform_id=message.platform_id,
                sync_log_id=message.sync_log_id,
            )
            return False

        if message.result is not None:
            platform = await session.load(Platform, message.platform_id)
            if platform is None:
                reason = "Platform does not exist. Moved to error queue."
                logger.error(reason, platform_id=message.platform_id, user_id=user.id)
                await context.forward_to_error(reason)
                return False
            await self.platform_data.add_platform_data(session, user.id, platform, message.result)
        else:
            logger.info(
                "Data fetch completed without data, keeping existing snapshot",
                user_id=user.id,
                platform_id=message.platform_id,
            )

        connection.mark_data_fetch_succeeded()

        await self.sync_logs.add_step(
            session,
            message.sync_log_id,
            make_step(DataSyncStepType.PLATFORM_DATA_FETCH, DataSyncStepState.SUCCEEDED),
        )
        self.notifications.notify_synced(
            session,
            user.id,
            connection.connection_info.subscriber_app_ids(),
            message.platform_id,
            message.sync_log_id,
        )

        await session.save_changes()
        logger.info(
            "Data fetch result applied",
            user_id=user.id,
            platform_id=message.platform_id,
            sync_log_id=message.sync_log_id,
        )
        return True


# Global instance
data_fetch_complete_handler = DataFetchCompleteHandler()
