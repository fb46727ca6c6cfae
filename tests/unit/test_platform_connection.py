"""
Tests for the PlatformConnection state and fetch-ripeness rules.
"""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from gigsync.models.domain.catalog_domain import Platform
from gigsync.models.domain.enums import (
    PlatformAuthenticationMechanism,
    PlatformConnectionDeleteReason,
    PlatformConnectionState,
    PlatformDataClaim,
    PlatformIntegrationType,
)
from gigsync.models.domain.user_domain import (
    EmailConnectionInfo,
    OAuthConnectionInfo,
    OAuthOrEmailConnectionInfo,
    PlatformConnection,
    Token,
    credential_identity,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_connection(info=None, poll_interval_seconds=3600, **fields) -> PlatformConnection:
    return PlatformConnection(
        platform_id="platform-1",
        platform_name="Gigger",
        external_platform_id=uuid.uuid4(),
        integration_type=PlatformIntegrationType.GIG_DATA_PLATFORM,
        connection_info=info or EmailConnectionInfo(email="worker@example.com", email_verified=True),
        poll_interval_seconds=poll_interval_seconds,
        **fields,
    )


class TestFetchRipeness:
    def test_never_fetched_connection_is_ripe(self):
        assert make_connection().is_ripe_for_data_fetch(NOW) is True

    def test_ripe_once_poll_interval_passed_since_completion(self):
        connection = make_connection()
        connection.mark_data_fetch_started(NOW - timedelta(seconds=3610))
        connection.mark_data_fetch_succeeded(NOW - timedelta(seconds=3601))

        assert connection.is_ripe_for_data_fetch(NOW) is True

    def test_not_ripe_before_poll_interval_passed(self):
        connection = make_connection()
        connection.mark_data_fetch_started(NOW - timedelta(seconds=3605))
        connection.mark_data_fetch_succeeded(NOW - timedelta(seconds=3599))

        assert connection.is_ripe_for_data_fetch(NOW) is False

    def test_started_fetch_blocks_until_interval_passed(self):
        connection = make_connection()
        connection.mark_data_fetch_started(NOW - timedelta(seconds=10))

        assert connection.last_fetch_attempt_completed is None
        assert connection.is_ripe_for_data_fetch(NOW) is False
        assert connection.is_ripe_for_data_fetch(NOW + timedelta(seconds=3590)) is True

    def test_failed_fetch_counts_as_completed(self):
        connection = make_connection()
        connection.mark_data_fetch_started(NOW - timedelta(seconds=20))
        connection.mark_data_fetch_failed(NOW - timedelta(seconds=10))

        assert connection.last_successful_fetch is None
        assert connection.is_ripe_for_data_fetch(NOW) is False
        assert connection.is_ripe_for_data_fetch(NOW + timedelta(seconds=3590)) is True

    def test_deleted_connection_is_never_ripe(self):
        connection = make_connection()
        connection.mark_deleted(PlatformConnectionDeleteReason.USER_DID_NOT_EXIST)

        assert connection.is_ripe_for_data_fetch(NOW) is False

    def test_unpolled_connection_is_never_ripe(self):
        connection = make_connection(poll_interval_seconds=None)

        assert connection.is_ripe_for_data_fetch(NOW) is False

    def test_not_ripe_right_after_fetch_started(self):
        connection = make_connection(poll_interval_seconds=1)
        connection.mark_data_fetch_started(NOW)

        assert connection.is_ripe_for_data_fetch(NOW) is False

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_poll_interval_is_rejected(self, interval):
        with pytest.raises(ValidationError):
            make_connection(poll_interval_seconds=interval)

    @pytest.mark.parametrize("interval", [0, -5])
    def test_platform_rejects_non_positive_poll_interval(self, interval):
        with pytest.raises(ValidationError):
            Platform(
                name="Gigger",
                integration_type=PlatformIntegrationType.GIG_DATA_PLATFORM,
                authentication_mechanism=PlatformAuthenticationMechanism.EMAIL,
                data_poll_interval_seconds=interval,
            )


class TestCurrentState:
    def test_verified_email_connection_without_fetch_is_connected(self):
        assert make_connection().current_state() == PlatformConnectionState.CONNECTED

    def test_successful_fetch_makes_connection_synced(self):
        connection = make_connection()
        connection.mark_data_fetch_succeeded(NOW)

        assert connection.current_state() == PlatformConnectionState.SYNCED

    def test_unverified_email_awaits_verification(self):
        connection = make_connection(info=EmailConnectionInfo(email="worker@example.com"))

        assert connection.current_state() == PlatformConnectionState.AWAITING_EMAIL_VERIFICATION

    def test_oauth_without_token_awaits_authentication(self):
        connection = make_connection(info=OAuthConnectionInfo())

        assert connection.current_state() == PlatformConnectionState.AWAITING_OAUTH_AUTHENTICATION

    def test_tombstone_is_removed(self):
        connection = make_connection()
        connection.mark_data_fetch_succeeded(NOW)
        connection.mark_deleted(PlatformConnectionDeleteReason.NOT_AUTHORIZED)

        assert connection.current_state() == PlatformConnectionState.REMOVED
        assert connection.delete_reason == PlatformConnectionDeleteReason.NOT_AUTHORIZED


class TestConnectionInfo:
    def test_subscribe_twice_keeps_one_entry_and_updates_claim(self):
        info = EmailConnectionInfo(email="worker@example.com")

        assert info.subscribe("app-1", PlatformDataClaim.AGGREGATED) is True
        assert info.subscribe("app-1", PlatformDataClaim.FULL) is False

        assert info.subscriber_app_ids() == ["app-1"]
        assert info.find_notification_info("app-1").data_claim == PlatformDataClaim.FULL

    def test_widening_email_info_keeps_subscribers(self):
        info = EmailConnectionInfo(email="worker@example.com")
        info.subscribe("app-1", PlatformDataClaim.AGGREGATED)

        widened = OAuthOrEmailConnectionInfo.from_connection_info(info)

        assert widened.email == "worker@example.com"
        assert widened.is_oauth_authentication is False
        assert widened.subscriber_app_ids() == ["app-1"]

    def test_credential_identity(self):
        token = Token(access_token="abc")
        assert credential_identity(OAuthConnectionInfo(token=token)) == ("oauth", None)
        assert credential_identity(EmailConnectionInfo(email="A@Example.com")) == (
            "email",
            "a@example.com",
        )
        assert credential_identity(OAuthOrEmailConnectionInfo(token=token)) == ("oauth", None)


class TestToken:
    def test_token_without_expiry_never_expires(self):
        assert Token(access_token="abc").has_expired(NOW) is False

    def test_token_expiry(self):
        token = Token(access_token="abc", expires_in_seconds=3600, created=NOW)

        assert token.has_expired(NOW + timedelta(seconds=3599)) is False
        assert token.has_expired(NOW + timedelta(seconds=3600)) is True
        assert token.needs_refresh(NOW + timedelta(seconds=3550)) is True
