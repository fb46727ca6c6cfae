"""
Tells an app whether a user's email address ended up verified.

POSTs ``{userId, email, verified, sharedSecret}`` to the app's email
verification endpoint. Failed calls are redelivered with the same capped
exponential backoff as connection-update webhooks. A missing user, app or
endpoint, or an endpoint that points inside the network, can never succeed
and goes straight to the error queue.
"""

import httpx

from gigsync.config import settings
from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.api.webhook_payload import EmailVerificationNotificationPayload
from gigsync.models.domain.catalog_domain import App
from gigsync.models.domain.enums import UserEmailState
from gigsync.models.domain.user_domain import User
from gigsync.models.messages import EmailVerificationNotificationMessage
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.messaging.retry_policy import BackoffAction, BackoffPolicy
from gigsync.services.notification_dispatcher import DeliveryOutcome
from gigsync.services.webhook_url_validator import (
    UrlCheck,
    WebhookUrlValidator,
    webhook_url_validator,
)

logger = get_logger(__name__)


class EmailVerificationNotificationHandler:
    def __init__(
        self,
        session_factory=open_session,
        http_client: httpx.AsyncClient | None = None,
        url_validator: WebhookUrlValidator | None = None,
        policy: BackoffPolicy | None = None,
    ):
        self.session_factory = session_factory
        self._http_client = http_client
        self.url_validator = url_validator or webhook_url_validator
        self.policy = policy or BackoffPolicy(
            max_retries=settings.NOTIFICATION_MAX_RETRIES,
            max_delay_seconds=settings.BACKOFF_MAX_DELAY_SECONDS,
        )

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

    async def _dead_letter(
        self, message: EmailVerificationNotificationMessage, context: MessageContext, reason: str
    ) -> DeliveryOutcome:
        logger.warning(
            "Email verification notification cannot be delivered, dead-lettering",
            user_id=message.user_id,
            app_id=message.app_id,
            reason=reason,
        )
        await context.forward_to_error(reason)
        return DeliveryOutcome.DEAD_LETTERED

    async def handle(
        self, message: EmailVerificationNotificationMessage, context: MessageContext
    ) -> DeliveryOutcome:
        session = self.session_factory()

        user = await session.load(User, message.user_id)
        if user is None:
            return await self._dead_letter(message, context, "User does not exist")

        user_email = user.find_email(message.email)
        verified = user_email is not None and user_email.state == UserEmailState.VERIFIED

        app = await session.load(App, message.app_id)
        if app is None:
            return await self._dead_letter(message, context, "App does not exist")

        url = app.email_verification_notification_endpoint
        if not url or not url.strip():
            return await self._dead_letter(
                message, context, "App has no email verification notification endpoint"
            )

        validation = await self.url_validator.validate(url)
        if validation.check == UrlCheck.INVALID:
            return await self._dead_letter(message, context, validation.reason)
        if validation.check == UrlCheck.UNRESOLVABLE:
            return await self._schedule_retry(context)

        payload = EmailVerificationNotificationPayload(
            user_id=user.external_id,
            email=message.email,
            verified=verified,
            shared_secret=app.secret_key,
        )
        try:
            response = await self.http_client.post(
                url,
                json=payload.to_json_body(),
                headers={"Content-Type": "application/json"},
            )
        except httpx.RequestError as e:
            logger.error(
                "Error calling email verification endpoint",
                app_id=app.id,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._schedule_retry(context)

        if not response.is_success:
            logger.error(
                "Email verification endpoint returned non-success status",
                app_id=app.id,
                url=url,
                status_code=response.status_code,
            )
            return await self._schedule_retry(context)

        logger.info(
            "App notified about email verification",
            user_id=user.id,
            app_id=app.id,
            verified=verified,
        )
        return DeliveryOutcome.DELIVERED

    async def _schedule_retry(self, context: MessageContext) -> DeliveryOutcome:
        decision = await context.bus.defer_with_exponential_backoff(context.envelope, self.policy)
        if decision.action == BackoffAction.DEAD_LETTER:
            return DeliveryOutcome.DEAD_LETTERED
        return DeliveryOutcome.RETRY_SCHEDULED


# Global instance
email_verification_notification_handler = EmailVerificationNotificationHandler()
