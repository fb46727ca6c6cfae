"""
Webhook delivery of connection updates.

Handles one PlatformConnectionUpdateNotificationMessage: resolves the user,
app and platform it refers to, builds the payload the app's data claim allows,
and POSTs it to the app's notification endpoint. Failed deliveries are
redelivered with capped exponential backoff and dead-lettered once the retry
budget is spent. Every terminal outcome is recorded on the sync log when the
message belongs to one.
"""

from enum import Enum

import httpx

from gigsync.config import settings
from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.catalog_domain import App, Platform
from gigsync.models.domain.enums import (
    DataSyncStepState,
    DataSyncStepType,
    NotificationReason,
    PlatformConnectionState,
    PlatformDataClaim,
)
from gigsync.models.domain.user_domain import User
from gigsync.models.messages import PlatformConnectionUpdateNotificationMessage
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.messaging.retry_policy import BackoffAction, BackoffPolicy
from gigsync.services.platform_data_service import PlatformDataService, platform_data_service
from gigsync.services.sync_log_service import SyncLogService, make_step, sync_log_service
from gigsync.services.webhook_payload_builder import build_notification_payload
from gigsync.services.webhook_url_validator import (
    UrlCheck,
    WebhookUrlValidator,
    webhook_url_validator,
)

logger = get_logger(__name__)

DATA_STATES = (PlatformConnectionState.CONNECTED, PlatformConnectionState.SYNCED)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


class NotificationDispatcher:
    def __init__(
        self,
        session_factory=open_session,
        http_client: httpx.AsyncClient | None = None,
        url_validator: WebhookUrlValidator | None = None,
        policy: BackoffPolicy | None = None,
        sync_logs: SyncLogService | None = None,
        platform_data: PlatformDataService | None = None,
    ):
        self.session_factory = session_factory
        self._http_client = http_client
        self.url_validator = url_validator or webhook_url_validator
        self.policy = policy or BackoffPolicy(
            max_retries=settings.NOTIFICATION_MAX_RETRIES,
            max_delay_seconds=settings.BACKOFF_MAX_DELAY_SECONDS,
        )
        self.sync_logs = sync_logs or sync_log_service
        self.platform_data = platform_data or platform_data_service

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.WEBHOOK_TIMEOUT_SECONDS)
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def dispatch(
        self, message: PlatformConnectionUpdateNotificationMessage, context: MessageContext
    ) -> DeliveryOutcome:
        session = self.session_factory()

        user = await session.load(User, message.user_id)
        app = await session.load(App, message.app_id)
        platform = await session.load(Platform, message.platform_id)

        missing = [
            name
            for name, entity in (("user", user), ("app", app), ("platform", platform))
            if entity is None
        ]
        if missing:
            log_message = f"Missing {', '.join(missing)} for notification. Moved to error queue."
            logger.warning(
                "Notification refers to missing entities, dead-lettering",
                user_id=message.user_id,
                app_id=message.app_id,
                platform_id=message.platform_id,
                missing=missing,
            )
            await context.forward_to_error(log_message)
            await self._record_step(message, DataSyncStepState.FAILED, log_message)
            return DeliveryOutcome.DEAD_LETTERED

        reason = message.reason
        state = message.platform_connection_state

        connection = user.find_active_connection(platform.id)
        notification_info = (
            connection.connection_info.find_notification_info(app.id) if connection else None
        )

        if reason == NotificationReason.DATA_UPDATE and state in DATA_STATES:
            if connection is None or notification_info is None:
                logger.warning(
                    "App no longer connected to platform, notifying removal instead",
                    user_id=user.id,
                    app_id=app.id,
                    platform_id=platform.id,
                    has_connection=connection is not None,
                )
                reason = NotificationReason.CONNECTION_DELETED
                state = PlatformConnectionState.REMOVED

        platform_data = None
        if reason == NotificationReason.DATA_UPDATE and state in DATA_STATES:
            platform_data = await self.platform_data.get_platform_data(session, user.id, platform.id)

        claim = notification_info.data_claim if notification_info else PlatformDataClaim.AGGREGATED
        payload = build_notification_payload(
            user, app, platform, state, reason, claim, platform_data=platform_data
        )

        url = app.notification_endpoint
        validation = await self.url_validator.validate(url)
        if validation.check == UrlCheck.INVALID:
            logger.warning(
                "Invalid notification endpoint, dropping message",
                app_id=app.id,
                url=url,
                reason=validation.reason,
            )
            await self._record_step(message, DataSyncStepState.FAILED, validation.reason, url)
            return DeliveryOutcome.DROPPED
        if validation.check == UrlCheck.UNRESOLVABLE:
            return await self._schedule_retry(message, context, validation.reason, url)

        try:
            response = await self.http_client.post(
                url,
                json=payload.to_json_body(),
                headers={"Content-Type": "application/json"},
            )
        except httpx.RequestError as e:
            logger.error(
                "Error calling notification endpoint",
                app_id=app.id,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._schedule_retry(
                message, context, f"Request error: {type(e).__name__}: {e}", url
            )

        if not response.is_success:
            logger.error(
                "Notification endpoint returned non-success status",
                app_id=app.id,
                url=url,
                status_code=response.status_code,
            )
            return await self._schedule_retry(
                message, context, f"Endpoint returned status {response.status_code}", url
            )

        logger.info(
            "App notified about platform connection update",
            user_id=user.id,
            app_id=app.id,
            platform_id=platform.id,
            state=state.value,
            reason=reason.value,
            claim=claim.value,
            has_platform_data=platform_data is not None,
        )
        await self._record_step(message, DataSyncStepState.SUCCEEDED, "App notified", url)
        return DeliveryOutcome.DELIVERED

    async def _schedule_retry(
        self,
        message: PlatformConnectionUpdateNotificationMessage,
        context: MessageContext,
        failure: str | None,
        url: str | None,
    ) -> DeliveryOutcome:
        decision = await context.bus.defer_with_exponential_backoff(context.envelope, self.policy)
        if decision.action == BackoffAction.DEAD_LETTER:
            await self._record_step(
                message,
                DataSyncStepState.FAILED,
                f"Gave up after {decision.attempt} retries. Last error: {failure}",
                url,
            )
            return DeliveryOutcome.DEAD_LETTERED
        return DeliveryOutcome.RETRY_SCHEDULED

    async def _record_step(
        self,
        message: PlatformConnectionUpdateNotificationMessage,
        state: DataSyncStepState,
        log_message: str | None,
        url: str | None = None,
    ) -> None:
        await self.sync_logs.append_step(
            message.sync_log_id,
            make_step(
                DataSyncStepType.APP_NOTIFICATION,
                state,
                log_message=log_message,
                app_id=message.app_id,
                app_webhook_url=url,
            ),
        )


# Global instance
notification_dispatcher = NotificationDispatcher()
