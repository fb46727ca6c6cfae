"""Enumerations shared by the domain models, messages and webhook payloads."""

from enum import Enum


class PlatformConnectionState(str, Enum):
    AWAITING_OAUTH_AUTHENTICATION = "AwaitingOAuthAuthentication"
    AWAITING_EMAIL_VERIFICATION = "AwaitingEmailVerification"
    CONNECTED = "Connected"
    SYNCED = "Synced"
    REMOVED = "Removed"


class NotificationReason(str, Enum):
    DATA_UPDATE = "DataUpdate"
    CONNECTION_DELETED = "ConnectionDeleted"


class PlatformDataClaim(str, Enum):
    AGGREGATED = "Aggregated"
    FULL = "Full"


class PlatformIntegrationType(str, Enum):
    FREELANCER = "FreelancerIntegration"
    UPWORK = "UpworkIntegration"
    AIRBNB = "AirbnbIntegration"
    GIG_DATA_PLATFORM = "GigDataPlatformIntegration"
    MANUAL = "Manual"


class PlatformAuthenticationMechanism(str, Enum):
    OAUTH2 = "Oauth2"
    EMAIL = "Email"


class PlatformConnectionDeleteReason(str, Enum):
    # Email platforms: the platform does not know the user
    USER_DID_NOT_EXIST = "UserDidNotExist"
    # OAuth platforms: the stored token no longer authorizes us
    NOT_AUTHORIZED = "NotAuthorized"


class PlatformAchievementType(str, Enum):
    QUALIFICATION_ASSESSMENT = "QualificationAssessment"
    BADGE = "Badge"


class UserEmailState(str, Enum):
    UNVERIFIED = "Unverified"
    AWAITING_VERIFICATION = "AwaitingVerification"
    VERIFIED = "Verified"


class ConnectionInfoKind(str, Enum):
    OAUTH = "OAuth"
    EMAIL = "Email"
    OAUTH_OR_EMAIL = "OAuthOrEmail"


class DataSyncStepType(str, Enum):
    PLATFORM_DATA_FETCH = "PlatformDataFetch"
    APP_NOTIFICATION = "AppNotification"
    REMOVE_PLATFORM_CONNECTION = "RemovePlatformConnection"


class DataSyncStepState(str, Enum):
    STARTED = "Started"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
