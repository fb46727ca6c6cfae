# models/domain/user_domain.py
"""
User aggregate: the user, their verified emails and their platform connections.

ConnectionInfo is a tagged union on ``kind``. Code that branches on the
variant switches on ConnectionInfoKind and raises UnsupportedConnectionInfoError
for anything it does not handle.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Annotated, ClassVar, Literal

from pydantic import BaseModel, Field

from gigsync.models.domain.enums import (
    ConnectionInfoKind,
    PlatformConnectionDeleteReason,
    PlatformConnectionState,
    PlatformDataClaim,
    PlatformIntegrationType,
    UserEmailState,
)


def utc_now() -> datetime:
    return datetime.now(UTC)


class UnsupportedConnectionInfoError(Exception):
    """Raised when a code path receives a connection variant it cannot handle."""

    def __init__(self, kind: ConnectionInfoKind, operation: str | None = None):
        super().__init__(f"Unsupported connection info kind: {kind}")
        self.kind = kind
        self.operation = operation
        self.recoverable = False


class Token(BaseModel):
    """OAuth token pair held by OAuth connections."""

    access_token: str
    refresh_token: str | None = None
    expires_in_seconds: int | None = None
    created: datetime = Field(default_factory=utc_now)

    def expires_at(self) -> datetime | None:
        if self.expires_in_seconds is None:
            return None
        return self.created + timedelta(seconds=self.expires_in_seconds)

    def has_expired(self, now: datetime | None = None) -> bool:
        """Check if access token is expired."""
        expires_at = self.expires_at()
        if expires_at is None:
            return False
        return (now or utc_now()) >= expires_at

    def needs_refresh(self, now: datetime | None = None, buffer_seconds: int = 60) -> bool:
        """Check if token should be refreshed soon."""
        expires_at = self.expires_at()
        if expires_at is None:
            return False
        return (now or utc_now()) + timedelta(seconds=buffer_seconds) >= expires_at


class NotificationInfo(BaseModel):
    """A subscriber of a connection. app_id is a reference by id, never an embedded App."""

    app_id: str
    data_claim: PlatformDataClaim = PlatformDataClaim.AGGREGATED
    created: datetime = Field(default_factory=utc_now)


class ConnectionInfoBase(BaseModel):
    notification_infos: list[NotificationInfo] = Field(default_factory=list)

    def find_notification_info(self, app_id: str) -> NotificationInfo | None:
        return next((ni for ni in self.notification_infos if ni.app_id == app_id), None)

    def subscribe(self, app_id: str, data_claim: PlatformDataClaim) -> bool:
        """
        Register an app for notifications, or refresh its claim if already present.

        Returns True when a new subscriber was added.
        """
        existing = self.find_notification_info(app_id)
        if existing is not None:
            existing.data_claim = data_claim
            return False
        self.notification_infos.append(NotificationInfo(app_id=app_id, data_claim=data_claim))
        return True

    def subscriber_app_ids(self) -> list[str]:
        return [ni.app_id for ni in self.notification_infos]

    def carry_subscribers_from(self, previous: "ConnectionInfoBase") -> None:
        """Copy the prior subscriber list onto this info, keeping app ids unique."""
        for info in previous.notification_infos:
            if self.find_notification_info(info.app_id) is None:
                self.notification_infos.append(info.model_copy())


class OAuthConnectionInfo(ConnectionInfoBase):
    kind: Literal[ConnectionInfoKind.OAUTH] = ConnectionInfoKind.OAUTH
    # None while the user has not completed the OAuth handshake
    token: Token | None = None


class EmailConnectionInfo(ConnectionInfoBase):
    kind: Literal[ConnectionInfoKind.EMAIL] = ConnectionInfoKind.EMAIL
    email: str
    email_verified: bool = False


class OAuthOrEmailConnectionInfo(ConnectionInfoBase):
    kind: Literal[ConnectionInfoKind.OAUTH_OR_EMAIL] = ConnectionInfoKind.OAUTH_OR_EMAIL
    token: Token | None = None
    email: str | None = None

    @property
    def is_oauth_authentication(self) -> bool:
        return self.token is not None

    @classmethod
    def from_connection_info(cls, info: "ConnectionInfo") -> "OAuthOrEmailConnectionInfo":
        """Widen an OAuth or Email info to the combined variant."""
        if info.kind == ConnectionInfoKind.OAUTH_OR_EMAIL:
            return info
        if info.kind == ConnectionInfoKind.OAUTH:
            return cls(token=info.token, notification_infos=info.notification_infos)
        if info.kind == ConnectionInfoKind.EMAIL:
            return cls(email=info.email, notification_infos=info.notification_infos)
        raise UnsupportedConnectionInfoError(info.kind, operation="widen_connection_info")


ConnectionInfo = Annotated[
    OAuthConnectionInfo | EmailConnectionInfo | OAuthOrEmailConnectionInfo,
    Field(discriminator="kind"),
]


def credential_identity(info: ConnectionInfo) -> tuple[str, str | None]:
    """
    Identity used to decide whether a reconnect is the same connection.

    Any OAuth token counts as the same identity; email identities compare the address.
    """
    if info.kind == ConnectionInfoKind.OAUTH:
        return ("oauth", None)
    if info.kind == ConnectionInfoKind.EMAIL:
        return ("email", info.email.lower())
    if info.kind == ConnectionInfoKind.OAUTH_OR_EMAIL:
        if info.is_oauth_authentication:
            return ("oauth", None)
        return ("email", (info.email or "").lower())
    raise UnsupportedConnectionInfoError(info.kind, operation="credential_identity")


class PlatformConnection(BaseModel):
    """The (user, platform) pairing, owned by the User aggregate."""

    platform_id: str
    platform_name: str
    external_platform_id: uuid.UUID
    integration_type: PlatformIntegrationType
    connection_info: ConnectionInfo
    created: datetime = Field(default_factory=utc_now)
    last_fetch_attempt_start: datetime | None = None
    last_fetch_attempt_completed: datetime | None = None
    last_successful_fetch: datetime | None = None
    # None means the connection is never polled automatically
    poll_interval_seconds: int | None = Field(default=None, gt=0)
    is_deleted: bool = False
    delete_reason: PlatformConnectionDeleteReason | None = None

    def current_state(self) -> PlatformConnectionState:
        if self.is_deleted:
            return PlatformConnectionState.REMOVED

        info = self.connection_info
        if info.kind == ConnectionInfoKind.OAUTH and info.token is None:
            return PlatformConnectionState.AWAITING_OAUTH_AUTHENTICATION
        if info.kind == ConnectionInfoKind.EMAIL and not info.email_verified:
            return PlatformConnectionState.AWAITING_EMAIL_VERIFICATION

        if self.last_successful_fetch is not None:
            return PlatformConnectionState.SYNCED
        return PlatformConnectionState.CONNECTED

    def is_ripe_for_data_fetch(self, now: datetime) -> bool:
        """True when the connection is due for its next scheduled fetch at ``now``."""
        if self.is_deleted or self.poll_interval_seconds is None:
            return False

        if self.last_fetch_attempt_start is None:
            return True

        interval = timedelta(seconds=self.poll_interval_seconds)
        if self.last_fetch_attempt_completed is not None:
            return now - self.last_fetch_attempt_completed >= interval

        # Started but never completed: eligible again once a full interval has passed
        return now - self.last_fetch_attempt_start >= interval

    def mark_data_fetch_started(self, now: datetime | None = None) -> None:
        self.last_fetch_attempt_start = now or utc_now()
        self.last_fetch_attempt_completed = None

    def mark_data_fetch_succeeded(self, now: datetime | None = None) -> None:
        completed = now or utc_now()
        self.last_fetch_attempt_completed = completed
        self.last_successful_fetch = completed

    def mark_data_fetch_failed(self, now: datetime | None = None) -> None:
        self.last_fetch_attempt_completed = now or utc_now()

    def mark_deleted(self, reason: PlatformConnectionDeleteReason) -> None:
        self.is_deleted = True
        self.delete_reason = reason


class UserEmail(BaseModel):
    email: str
    state: UserEmailState = UserEmailState.UNVERIFIED
    created: datetime = Field(default_factory=utc_now)
    state_changed: datetime | None = None
    verifying_app_id: str | None = None

    def set_state(self, state: UserEmailState, now: datetime | None = None) -> None:
        self.state = state
        self.state_changed = now or utc_now()


class User(BaseModel):
    __collection__: ClassVar[str] = "users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    unique_identifier: str | None = None
    name: str | None = None
    platform_connections: list[PlatformConnection] = Field(default_factory=list)
    user_emails: list[UserEmail] = Field(default_factory=list)

    def find_connection(self, platform_id: str) -> PlatformConnection | None:
        """The connection for a platform, tombstoned or not."""
        return next((pc for pc in self.platform_connections if pc.platform_id == platform_id), None)

    def find_active_connection(self, platform_id: str) -> PlatformConnection | None:
        connection = self.find_connection(platform_id)
        if connection is None or connection.is_deleted:
            return None
        return connection

    def remove_connection(self, platform_id: str) -> PlatformConnection | None:
        connection = self.find_connection(platform_id)
        if connection is not None:
            self.platform_connections.remove(connection)
        return connection

    def find_email(self, email: str) -> UserEmail | None:
        email = email.lower()
        return next((ue for ue in self.user_emails if ue.email == email), None)
