"""
Removes a platform connection after the platform revoked access.

With a delete reason the connection is tombstoned, without one it is dropped
together with its platform data. Subscribers captured before removal are
notified with state Removed.
"""

from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.enums import DataSyncStepState, DataSyncStepType
from gigsync.models.domain.user_domain import User
from gigsync.models.messages import PlatformConnectionRemovedMessage
from gigsync.services.app_notification_service import (
    AppNotificationService,
    app_notification_service,
)
from gigsync.services.connection_state_machine import (
    ConnectionStateMachine,
    connection_state_machine,
)
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.platform_data_service import PlatformDataService, platform_data_service
from gigsync.services.sync_log_service import SyncLogService, make_step, sync_log_service

logger = get_logger(__name__)


class ConnectionRemovedHandler:
    def __init__(
        self,
        session_factory=open_session,
        state_machine: ConnectionStateMachine | None = None,
        platform_data: PlatformDataService | None = None,
        notifications: AppNotificationService | None = None,
        sync_logs: SyncLogService | None = None,
    ):
        self.session_factory = session_factory
        self.state_machine = state_machine or connection_state_machine
        self.platform_data = platform_data or platform_data_service
        self.notifications = notifications or app_notification_service
        self.sync_logs = sync_logs or sync_log_service

    async def handle(self, message: PlatformConnectionRemovedMessage, context: MessageContext) -> bool:
        session = self.session_factory()

        user = await session.load(User, message.user_id)
        if user is None:
            logger.warning(
                "User not found, cannot remove platform connection",
                user_id=message.user_id,
                platform_id=message.platform_id,
            )
            return False

        removed = await self.state_machine.remove_connection(
            session, user, message.platform_id, message.delete_reason
        )
        if removed is None:
            logger.warning(
                "Platform connection not found, nothing to remove",
                user_id=user.id,
                platform_id=message.platform_id,
            )
            return False

        if removed.hard_deleted:
            await self.platform_data.remove_platform_data(session, user.id, message.platform_id)

        reason = message.delete_reason.value if message.delete_reason else "none"
        await self.sync_logs.add_step(
            session,
            message.sync_log_id,
            make_step(
                DataSyncStepType.REMOVE_PLATFORM_CONNECTION,
                DataSyncStepState.SUCCEEDED,
                log_message=f"Connection removed, reason: {reason}",
            ),
        )
        self.notifications.notify_removed(
            session,
            user.id,
            removed.subscriber_app_ids,
            message.platform_id,
            message.sync_log_id,
        )

        await session.save_changes()
        return True


# Global instance
connection_removed_handler = ConnectionRemovedHandler()
