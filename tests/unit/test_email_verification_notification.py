"""
Tests for telling apps about email verification results.
"""

import json

import httpx
import pytest

from gigsync.config import settings
from gigsync.handlers.email_verification_notification_handler import (
    EmailVerificationNotificationHandler,
)
from gigsync.models.domain.enums import UserEmailState
from gigsync.models.domain.user_domain import UserEmail
from gigsync.models.messages import (
    EMAIL_VERIFICATION_NOTIFY_QUEUE,
    EmailVerificationNotificationMessage,
)
from gigsync.services.messaging.message_bus import (
    ERROR_REASON_HEADER,
    MessageContext,
    MessageEnvelope,
)
from gigsync.services.messaging.retry_policy import RETRY_COUNT_HEADER
from gigsync.services.notification_dispatcher import DeliveryOutcome
from gigsync.services.webhook_url_validator import WebhookUrlValidator

ENDPOINT = "https://subscriber.example.com/email-verified"


async def public_resolver(host):
    return ["93.184.216.34"]


class Recorder:
    def __init__(self, status_code=200, error: Exception | None = None):
        self.status_code = status_code
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code)


def make_handler(world, recorder: Recorder) -> EmailVerificationNotificationHandler:
    return EmailVerificationNotificationHandler(
        session_factory=world.session,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
        url_validator=WebhookUrlValidator(resolver=public_resolver),
    )


def setup(world, email_state=UserEmailState.VERIFIED, **app_overrides):
    app_fields = {"email_verification_notification_endpoint": ENDPOINT}
    app_fields.update(app_overrides)
    app = world.add_app(**app_fields)
    user = world.add_user(
        user_emails=[UserEmail(email="worker@example.com", state=email_state, verifying_app_id=app.id)]
    )
    return user, app


def make_context(world, user_id, app_id, headers=None):
    message = EmailVerificationNotificationMessage(
        user_id=user_id, app_id=app_id, email="worker@example.com"
    )
    envelope = MessageEnvelope.wrap(EMAIL_VERIFICATION_NOTIFY_QUEUE, message, headers=headers)
    return message, MessageContext(envelope=envelope, bus=world.bus)


class TestEmailVerificationNotification:
    @pytest.mark.asyncio
    async def test_verified_address_is_posted_in_camel_case(self, world):
        user, app = setup(world)
        recorder = Recorder()
        message, context = make_context(world, user.id, app.id)

        outcome = await make_handler(world, recorder).handle(message, context)

        assert outcome == DeliveryOutcome.DELIVERED
        [request] = recorder.requests
        assert str(request.url) == ENDPOINT
        assert json.loads(request.content) == {
            "userId": str(user.external_id),
            "email": "worker@example.com",
            "verified": True,
            "sharedSecret": "s3cret",
        }
        assert world.arq.jobs == []

    @pytest.mark.asyncio
    async def test_unverified_address_reports_false(self, world):
        user, app = setup(world, email_state=UserEmailState.AWAITING_VERIFICATION)
        recorder = Recorder()
        message, context = make_context(world, user.id, app.id)

        await make_handler(world, recorder).handle(message, context)

        assert json.loads(recorder.requests[0].content)["verified"] is False

    @pytest.mark.asyncio
    async def test_failed_call_is_retried_with_backoff(self, world):
        user, app = setup(world)
        message, context = make_context(world, user.id, app.id, headers={RETRY_COUNT_HEADER: "1"})

        outcome = await make_handler(world, Recorder(status_code=503)).handle(message, context)

        assert outcome == DeliveryOutcome.RETRY_SCHEDULED
        [(retry, delay)] = world.deferred()
        assert retry.queue == EMAIL_VERIFICATION_NOTIFY_QUEUE
        assert retry.headers[RETRY_COUNT_HEADER] == "2"
        assert delay == 2

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self, world):
        user, app = setup(world)
        message, context = make_context(world, user.id, app.id)
        recorder = Recorder(error=httpx.ConnectError("connection refused"))

        outcome = await make_handler(world, recorder).handle(message, context)

        assert outcome == DeliveryOutcome.RETRY_SCHEDULED
        [retry] = world.queue(EMAIL_VERIFICATION_NOTIFY_QUEUE)
        assert retry.headers[RETRY_COUNT_HEADER] == "1"

    @pytest.mark.asyncio
    async def test_exhausted_retries_dead_letter_once(self, world):
        user, app = setup(world)
        message, context = make_context(
            world,
            user.id,
            app.id,
            headers={RETRY_COUNT_HEADER: str(settings.NOTIFICATION_MAX_RETRIES)},
        )

        outcome = await make_handler(world, Recorder(status_code=500)).handle(message, context)

        assert outcome == DeliveryOutcome.DEAD_LETTERED
        assert len(world.queue(settings.ERROR_QUEUE_NAME)) == 1
        assert world.deferred() == []

    @pytest.mark.asyncio
    async def test_missing_endpoint_goes_to_error_queue(self, world):
        user, app = setup(world, email_verification_notification_endpoint=None)
        recorder = Recorder()
        message, context = make_context(world, user.id, app.id)

        outcome = await make_handler(world, recorder).handle(message, context)

        assert outcome == DeliveryOutcome.DEAD_LETTERED
        assert recorder.requests == []
        [dead] = world.queue(settings.ERROR_QUEUE_NAME)
        assert "no email verification notification endpoint" in dead.headers[ERROR_REASON_HEADER]

    @pytest.mark.asyncio
    async def test_internal_endpoint_goes_to_error_queue(self, world):
        user, app = setup(world, email_verification_notification_endpoint="http://10.0.0.8/hook")
        recorder = Recorder()
        message, context = make_context(world, user.id, app.id)

        outcome = await make_handler(world, recorder).handle(message, context)

        assert outcome == DeliveryOutcome.DEAD_LETTERED
        assert recorder.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["user", "app"])
    async def test_missing_user_or_app_goes_to_error_queue(self, world, missing):
        user, app = setup(world)
        user_id = "no-such-user" if missing == "user" else user.id
        app_id = "no-such-app" if missing == "app" else app.id
        message, context = make_context(world, user_id, app_id)

        outcome = await make_handler(world, Recorder()).handle(message, context)

        assert outcome == DeliveryOutcome.DEAD_LETTERED
        [dead] = world.queue(settings.ERROR_QUEUE_NAME)
        assert dead.headers[ERROR_REASON_HEADER] == f"{missing.capitalize()} does not exist"
