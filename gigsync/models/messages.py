# models/messages.py
"""
Queue message bodies and the logical queue names they travel on.

Messages carry ids only (user, platform, app, sync log). Handlers load the
current aggregates when they run.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from gigsync.models.api.gig_platform_api import PlatformUserUpdateDataMessage
from gigsync.models.domain.enums import (
    NotificationReason,
    PlatformConnectionDeleteReason,
    PlatformConnectionState,
    PlatformDataClaim,
    PlatformIntegrationType,
)
from gigsync.models.domain.platform_data_domain import PlatformDataFetchResult
from gigsync.models.domain.user_domain import utc_now

# Logical queue names
FETCH_TRIGGER_QUEUE = "fetch_trigger"
PLATFORM_FETCH_REQUEST_QUEUE = "platform_fetch_request"
FETCH_COMPLETE_QUEUE = "fetch_complete"
CONNECTION_REMOVED_QUEUE = "connection_removed"
CONNECTION_UPDATE_NOTIFY_QUEUE = "connection_update_notify"
GIG_PLATFORM_CALLBACK_QUEUE = "gig_platform_callback"
EMAIL_VERIFICATION_QUEUE = "email_verification"
EMAIL_VERIFICATION_NOTIFY_QUEUE = "email_verification_notify"


class PlatformDataFetchTriggerMessage(BaseModel):
    requested_at: datetime = Field(default_factory=utc_now)
    source: str = "timer"


class FetchDataForPlatformConnectionMessage(BaseModel):
    user_id: str
    platform_id: str
    integration_type: PlatformIntegrationType


class DataFetchCompleteMessage(BaseModel):
    user_id: str
    platform_id: str
    # None when the platform reported success without data
    result: PlatformDataFetchResult | None = None
    sync_log_id: str | None = None


class PlatformConnectionRemovedMessage(BaseModel):
    user_id: str
    platform_id: str
    delete_reason: PlatformConnectionDeleteReason | None = None
    sync_log_id: str | None = None


class PlatformConnectionUpdateNotificationMessage(BaseModel):
    app_id: str
    user_id: str
    platform_id: str
    platform_connection_state: PlatformConnectionState
    reason: NotificationReason
    sync_log_id: str | None = None


class EmailVerificationRequestedMessage(BaseModel):
    user_id: str
    app_id: str
    platform_id: str
    email: str
    data_claim: PlatformDataClaim | None = None


class EmailVerificationNotificationMessage(BaseModel):
    """Tells an app whether the address it asked about ended up verified."""

    user_id: str
    app_id: str
    email: str


MESSAGE_TYPES: dict[str, type[BaseModel]] = {
    message_type.__name__: message_type
    for message_type in (
        PlatformDataFetchTriggerMessage,
        FetchDataForPlatformConnectionMessage,
        DataFetchCompleteMessage,
        PlatformConnectionRemovedMessage,
        PlatformConnectionUpdateNotificationMessage,
        EmailVerificationRequestedMessage,
        EmailVerificationNotificationMessage,
        PlatformUserUpdateDataMessage,
    )
}
