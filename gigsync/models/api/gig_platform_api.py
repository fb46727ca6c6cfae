# models/api/gig_platform_api.py
"""Wire models for the gig data platform API and its data-update callback."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GigPlatformModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestLatestResult(GigPlatformModel):
    request_id: str | None = None
    message: str | None = None
    success: bool = False


class PlatformDataUpdateResultType(str, Enum):
    SUCCESS = "Success"
    MALFORMED_DATA_RESPONSE = "MalformedDataResponse"
    USER_NOT_FOUND = "UserNotFound"
    COMMUNICATION_ERROR = "CommunicationError"
    PLATFORM_ERROR = "PlatformError"


class InteractionPeriod(GigPlatformModel):
    start: datetime | None = None
    end: datetime | None = None


class InteractionClient(GigPlatformModel):
    name: str | None = None
    photo_uri: str | None = None


class InteractionRating(GigPlatformModel):
    value: float


class InteractionReview(GigPlatformModel):
    title: str | None = None
    text: str | None = None


class InteractionOutcome(GigPlatformModel):
    ratings: list[InteractionRating] = Field(default_factory=list)
    review: InteractionReview | None = None


class Interaction(GigPlatformModel):
    id: str | None = None
    period: InteractionPeriod | None = None
    client: InteractionClient | None = None
    outcome: InteractionOutcome = Field(default_factory=InteractionOutcome)


class GigAchievementType(str, Enum):
    BADGE = "Badge"
    QUALIFICATION_ASSESSMENT = "QualificationAssessment"


class GigAchievementScore(GigPlatformModel):
    value: float
    label: str


class GigAchievement(GigPlatformModel):
    id: str | None = None
    name: str
    type: GigAchievementType
    description: str | None = None
    badge_icon_uri: str | None = None
    score: GigAchievementScore | None = None


class GigPlatformData(GigPlatformModel):
    interactions: list[Interaction] = Field(default_factory=list)
    achievements: list[GigAchievement] = Field(default_factory=list)
    raw_data: str | None = None


class PlatformUserUpdateDataMessage(GigPlatformModel):
    """Callback sent by the gig data platform once a requested fetch has finished."""

    request_id: str
    result_type: PlatformDataUpdateResultType
    platform_data: GigPlatformData | None = None
