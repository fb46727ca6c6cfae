"""
Fan-out of connection updates to subscriber apps.

Every notification becomes one PlatformConnectionUpdateNotificationMessage per
app on the connection_update_notify queue, so a failing webhook only delays
its own app. Messages are queued on the session outbox and go out when the
caller saves its unit of work.
"""

from gigsync.db.session import DocumentSession
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.enums import NotificationReason, PlatformConnectionState
from gigsync.models.domain.user_domain import PlatformConnection
from gigsync.models.messages import (
    CONNECTION_UPDATE_NOTIFY_QUEUE,
    PlatformConnectionUpdateNotificationMessage,
)

logger = get_logger(__name__)


class AppNotificationService:
    def notify_data_update(
        self,
        session: DocumentSession,
        user_id: str,
        app_ids: list[str],
        connection: PlatformConnection,
    ) -> int:
        """Notify the connection's current state with reason DataUpdate."""
        return self._notify(
            session,
            user_id,
            app_ids,
            connection.platform_id,
            NotificationReason.DATA_UPDATE,
            connection.current_state(),
        )

    def notify_awaiting_oauth(
        self, session: DocumentSession, user_id: str, app_ids: list[str], platform_id: str
    ) -> int:
        return self._notify(
            session,
            user_id,
            app_ids,
            platform_id,
            NotificationReason.DATA_UPDATE,
            PlatformConnectionState.AWAITING_OAUTH_AUTHENTICATION,
        )

    def notify_awaiting_email_verification(
        self, session: DocumentSession, user_id: str, app_ids: list[str], platform_id: str
    ) -> int:
        return self._notify(
            session,
            user_id,
            app_ids,
            platform_id,
            NotificationReason.DATA_UPDATE,
            PlatformConnectionState.AWAITING_EMAIL_VERIFICATION,
        )

    def notify_removed(
        self,
        session: DocumentSession,
        user_id: str,
        app_ids: list[str],
        platform_id: str,
        sync_log_id: str | None = None,
    ) -> int:
        return self._notify(
            session,
            user_id,
            app_ids,
            platform_id,
            NotificationReason.CONNECTION_DELETED,
            PlatformConnectionState.REMOVED,
            sync_log_id,
        )

    def notify_synced(
        self,
        session: DocumentSession,
        user_id: str,
        app_ids: list[str],
        platform_id: str,
        sync_log_id: str | None,
    ) -> int:
        return self._notify(
            session,
            user_id,
            app_ids,
            platform_id,
            NotificationReason.DATA_UPDATE,
            PlatformConnectionState.SYNCED,
            sync_log_id,
        )

    def _notify(
        self,
        session: DocumentSession,
        user_id: str,
        app_ids: list[str],
        platform_id: str,
        reason: NotificationReason,
        state: PlatformConnectionState,
        sync_log_id: str | None = None,
    ) -> int:
        # One message per app, in subscription order
        unique_app_ids = list(dict.fromkeys(app_ids))
        for app_id in unique_app_ids:
            session.send(
                CONNECTION_UPDATE_NOTIFY_QUEUE,
                PlatformConnectionUpdateNotificationMessage(
                    app_id=app_id,
                    user_id=user_id,
                    platform_id=platform_id,
                    platform_connection_state=state,
                    reason=reason,
                    sync_log_id=sync_log_id,
                ),
            )

        if unique_app_ids:
            logger.info(
                "App notifications queued",
                user_id=user_id,
                platform_id=platform_id,
                reason=reason.value,
                state=state.value,
                app_count=len(unique_app_ids),
            )
        return len(unique_app_ids)


# Global instance
app_notification_service = AppNotificationService()
