"""
Platform connection lifecycle.

Connecting an app to a user's platform either creates the connection, joins an
existing one (idempotent), or replaces the connection info when the
authentication variant or identity changed. Replacement always carries the
subscriber list forward. A connection that is not yet authenticated is parked
without a poll interval, so the scheduler ignores it until it is activated.

All changes happen on aggregates tracked by the caller's DocumentSession; the
caller saves the session, which also publishes the queued notifications.
"""

from dataclasses import dataclass, field

from gigsync.db.session import DocumentSession
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.catalog_domain import App, Platform
from gigsync.models.domain.enums import (
    ConnectionInfoKind,
    PlatformAuthenticationMechanism,
    PlatformConnectionDeleteReason,
    PlatformConnectionState,
    PlatformDataClaim,
    UserEmailState,
)
from gigsync.models.domain.user_domain import (
    EmailConnectionInfo,
    OAuthConnectionInfo,
    PlatformConnection,
    Token,
    User,
    UserEmail,
    credential_identity,
)
from gigsync.models.messages import (
    EMAIL_VERIFICATION_NOTIFY_QUEUE,
    EMAIL_VERIFICATION_QUEUE,
    EmailVerificationNotificationMessage,
    EmailVerificationRequestedMessage,
)
from gigsync.services.app_notification_service import (
    AppNotificationService,
    app_notification_service,
)

logger = get_logger(__name__)


class PlatformAuthMechanismMismatchError(Exception):
    """The platform does not authenticate the way the caller tried to connect."""

    def __init__(
        self,
        platform_id: str,
        expected: PlatformAuthenticationMechanism,
        actual: PlatformAuthenticationMechanism,
    ):
        super().__init__(
            f"Platform {platform_id} auth mechanism must be {expected.value}, was {actual.value}"
        )
        self.platform_id = platform_id
        self.operation = "connect"
        self.recoverable = False


@dataclass(slots=True)
class ConnectionResult:
    state: PlatformConnectionState
    connection: PlatformConnection


@dataclass(slots=True)
class RemovedConnection:
    connection: PlatformConnection
    subscriber_app_ids: list[str] = field(default_factory=list)
    hard_deleted: bool = False


class ConnectionStateMachine:
    def __init__(self, notifications: AppNotificationService | None = None):
        self.notifications = notifications or app_notification_service

    # ------------------------------------------------------------------
    # OAuth platforms
    # ------------------------------------------------------------------

    async def start_oauth_connection(
        self,
        session: DocumentSession,
        user: User,
        app: App,
        platform: Platform,
        claim: PlatformDataClaim | None = None,
    ) -> ConnectionResult:
        """
        Begin connecting an app to an OAuth platform.

        A live OAuth connection with a token is joined as-is. Anything else
        leaves the connection parked in AwaitingOAuthAuthentication until
        complete_oauth_connection installs a token.
        """
        self._require_mechanism(platform, PlatformAuthenticationMechanism.OAUTH2)
        claim = claim or app.default_data_claim
        session.store_entity(user)

        connection = self._live_connection(user, platform)
        if connection is not None:
            info = connection.connection_info
            if credential_identity(info) == ("oauth", None) and info.token is not None:
                info.subscribe(app.id, claim)
                self.notifications.notify_data_update(session, user.id, [app.id], connection)
                return ConnectionResult(connection.current_state(), connection)

            if info.kind == ConnectionInfoKind.OAUTH:
                info.subscribe(app.id, claim)
            else:
                self._log_replacement(user, platform, connection, ConnectionInfoKind.OAUTH)
                parked = OAuthConnectionInfo()
                parked.carry_subscribers_from(info)
                parked.subscribe(app.id, claim)
                connection.connection_info = parked
                connection.poll_interval_seconds = None
        else:
            parked = OAuthConnectionInfo()
            parked.subscribe(app.id, claim)
            connection = self._new_connection(platform, parked)
            user.platform_connections.append(connection)

        self.notifications.notify_awaiting_oauth(session, user.id, [app.id], platform.id)
        logger.info(
            "OAuth connection awaiting authentication",
            user_id=user.id,
            platform_id=platform.id,
            app_id=app.id,
        )
        return ConnectionResult(PlatformConnectionState.AWAITING_OAUTH_AUTHENTICATION, connection)

    async def complete_oauth_connection(
        self,
        session: DocumentSession,
        user: User,
        app: App,
        platform: Platform,
        token: Token,
        claim: PlatformDataClaim | None = None,
    ) -> ConnectionResult:
        """Install the token from a finished OAuth handshake and activate the connection."""
        self._require_mechanism(platform, PlatformAuthenticationMechanism.OAUTH2)
        claim = claim or app.default_data_claim
        session.store_entity(user)

        authenticated = OAuthConnectionInfo(token=token)
        connection = self._live_connection(user, platform)
        if connection is not None:
            if connection.connection_info.kind != ConnectionInfoKind.OAUTH:
                self._log_replacement(user, platform, connection, ConnectionInfoKind.OAUTH)
            authenticated.carry_subscribers_from(connection.connection_info)
            connection.connection_info = authenticated
        else:
            connection = self._new_connection(platform, authenticated)
            user.platform_connections.append(connection)

        if authenticated.find_notification_info(app.id) is None:
            authenticated.subscribe(app.id, claim)
        connection.poll_interval_seconds = platform.data_poll_interval_seconds

        self.notifications.notify_data_update(session, user.id, [app.id], connection)
        logger.info(
            "OAuth connection completed",
            user_id=user.id,
            platform_id=platform.id,
            app_id=app.id,
            poll_interval_seconds=connection.poll_interval_seconds,
        )
        return ConnectionResult(connection.current_state(), connection)

    # ------------------------------------------------------------------
    # Email platforms
    # ------------------------------------------------------------------

    async def connect_email(
        self,
        session: DocumentSession,
        user: User,
        app: App,
        platform: Platform,
        email: str,
        claim: PlatformDataClaim | None = None,
        email_is_validated: bool = False,
    ) -> ConnectionResult:
        """
        Connect an app to an email platform.

        An unverified address starts the verification flow and parks the
        connection; a verified (or caller-validated) address activates it.
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValueError("An email address is required to connect an email platform")
        self._require_mechanism(platform, PlatformAuthenticationMechanism.EMAIL)
        claim = claim or app.default_data_claim
        session.store_entity(user)

        user_email = user.find_email(email)
        email_verified = user_email is not None and user_email.state == UserEmailState.VERIFIED

        connection = self._live_connection(user, platform)
        if connection is not None:
            info = connection.connection_info
            same_identity = (
                info.kind == ConnectionInfoKind.EMAIL and credential_identity(info) == ("email", email)
            )
            # A parked connection whose address is now vouched for falls through to activation
            if same_identity and (info.email_verified or not (email_is_validated or email_verified)):
                if info.subscribe(app.id, claim):
                    self.notifications.notify_data_update(session, user.id, [app.id], connection)
                return ConnectionResult(connection.current_state(), connection)

        if not email_is_validated and not email_verified:
            self._request_email_verification(session, user, app, platform, email, claim)
            connection = self._install_email_info(
                user, app, platform, connection, email, claim, verified=False
            )
            self.notifications.notify_awaiting_email_verification(
                session, user.id, [app.id], platform.id
            )
            return ConnectionResult(PlatformConnectionState.AWAITING_EMAIL_VERIFICATION, connection)

        if email_is_validated and not email_verified:
            self._mark_email_verified(user, email, app.id)

        connection = self._install_email_info(
            user, app, platform, connection, email, claim, verified=True
        )
        self.notifications.notify_data_update(session, user.id, [app.id], connection)
        return ConnectionResult(connection.current_state(), connection)

    async def complete_email_verification(
        self,
        session: DocumentSession,
        user: User,
        app: App,
        platform: Platform,
        email: str,
        claim: PlatformDataClaim | None = None,
    ) -> ConnectionResult:
        """Mark the address verified and activate the email connection."""
        email = (email or "").strip().lower()
        if not email:
            raise ValueError("An email address is required to complete verification")
        self._require_mechanism(platform, PlatformAuthenticationMechanism.EMAIL)
        claim = claim or app.default_data_claim
        session.store_entity(user)

        self._mark_email_verified(user, email, app.id)
        connection = self._install_email_info(
            user, app, platform, self._live_connection(user, platform), email, claim, verified=True
        )
        self.notifications.notify_data_update(session, user.id, [app.id], connection)
        session.send(
            EMAIL_VERIFICATION_NOTIFY_QUEUE,
            EmailVerificationNotificationMessage(user_id=user.id, app_id=app.id, email=email),
        )
        logger.info(
            "Email verification completed",
            user_id=user.id,
            platform_id=platform.id,
            app_id=app.id,
        )
        return ConnectionResult(connection.current_state(), connection)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_connection(
        self,
        session: DocumentSession,
        user: User,
        platform_id: str,
        delete_reason: PlatformConnectionDeleteReason | None = None,
    ) -> RemovedConnection | None:
        """
        Remove a connection. With a reason the record is tombstoned, without one
        it is dropped from the user.

        Returns None when the user has no such connection.
        """
        connection = user.find_connection(platform_id)
        if connection is None:
            return None
        session.store_entity(user)

        subscribers = connection.connection_info.subscriber_app_ids()
        if delete_reason is not None:
            connection.mark_deleted(delete_reason)
            hard_deleted = False
        else:
            user.remove_connection(platform_id)
            hard_deleted = True

        logger.info(
            "Platform connection removed",
            user_id=user.id,
            platform_id=platform_id,
            delete_reason=delete_reason.value if delete_reason else None,
            hard_deleted=hard_deleted,
            subscriber_count=len(subscribers),
        )
        return RemovedConnection(
            connection=connection, subscriber_app_ids=subscribers, hard_deleted=hard_deleted
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_mechanism(platform: Platform, expected: PlatformAuthenticationMechanism) -> None:
        if platform.authentication_mechanism != expected:
            raise PlatformAuthMechanismMismatchError(
                platform.id, expected, platform.authentication_mechanism
            )

    @staticmethod
    def _new_connection(platform: Platform, info) -> PlatformConnection:
        return PlatformConnection(
            platform_id=platform.id,
            platform_name=platform.name,
            external_platform_id=platform.external_id,
            integration_type=platform.integration_type,
            connection_info=info,
        )

    @staticmethod
    def _live_connection(user: User, platform: Platform) -> PlatformConnection | None:
        """The user's live connection; a tombstone for the platform is discarded."""
        connection = user.find_connection(platform.id)
        if connection is not None and connection.is_deleted:
            # Subscribers of a tombstone were already told it was removed
            logger.info(
                "Replacing removed platform connection",
                user_id=user.id,
                platform_id=platform.id,
                delete_reason=connection.delete_reason.value if connection.delete_reason else None,
            )
            user.remove_connection(platform.id)
            return None
        return connection

    @staticmethod
    def _log_replacement(
        user: User,
        platform: Platform,
        connection: PlatformConnection,
        new_kind: ConnectionInfoKind,
    ) -> None:
        logger.info(
            "Replacing connection info of live connection",
            user_id=user.id,
            platform_id=platform.id,
            previous_kind=connection.connection_info.kind.value,
            new_kind=new_kind.value,
            subscriber_count=len(connection.connection_info.notification_infos),
        )

    def _install_email_info(
        self,
        user: User,
        app: App,
        platform: Platform,
        connection: PlatformConnection | None,
        email: str,
        claim: PlatformDataClaim,
        verified: bool,
    ) -> PlatformConnection:
        if connection is None:
            connection = self._new_connection(platform, EmailConnectionInfo(email=email))
            user.platform_connections.append(connection)
        else:
            info = connection.connection_info
            if info.kind != ConnectionInfoKind.EMAIL or info.email != email:
                self._log_replacement(user, platform, connection, ConnectionInfoKind.EMAIL)
                replacement = EmailConnectionInfo(email=email)
                replacement.carry_subscribers_from(info)
                connection.connection_info = replacement

        info = connection.connection_info
        info.email_verified = verified
        if info.find_notification_info(app.id) is None:
            info.subscribe(app.id, claim)

        connection.poll_interval_seconds = platform.data_poll_interval_seconds if verified else None
        return connection

    @staticmethod
    def _request_email_verification(
        session: DocumentSession,
        user: User,
        app: App,
        platform: Platform,
        email: str,
        claim: PlatformDataClaim,
    ) -> None:
        user_email = user.find_email(email)
        if user_email is None:
            user_email = UserEmail(email=email)
            user.user_emails.append(user_email)
        elif user_email.state == UserEmailState.AWAITING_VERIFICATION:
            logger.info(
                "Restarting email verification",
                user_id=user.id,
                platform_id=platform.id,
                previous_app_id=user_email.verifying_app_id,
            )

        user_email.set_state(UserEmailState.AWAITING_VERIFICATION)
        user_email.verifying_app_id = app.id

        session.send(
            EMAIL_VERIFICATION_QUEUE,
            EmailVerificationRequestedMessage(
                user_id=user.id,
                app_id=app.id,
                platform_id=platform.id,
                email=email,
                data_claim=claim,
            ),
        )
        logger.info(
            "Email verification requested", user_id=user.id, platform_id=platform.id, app_id=app.id
        )

    @staticmethod
    def _mark_email_verified(user: User, email: str, app_id: str) -> None:
        user_email = user.find_email(email)
        if user_email is None:
            user_email = UserEmail(email=email)
            user.user_emails.append(user_email)
        user_email.verifying_app_id = user_email.verifying_app_id or app_id
        user_email.set_state(UserEmailState.VERIFIED)


# Global instance
connection_state_machine = ConnectionStateMachine()
