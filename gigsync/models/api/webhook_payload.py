# models/api/webhook_payload.py
"""
Subscriber-facing webhook payloads: connection updates and email verification results.

Serialized with camelCase aliases. The Aggregated data section has no review or
achievement fields at all; FullPlatformDataPayload adds them.
"""

import uuid
from datetime import date

from pydantic import BaseModel, ConfigDict, SerializeAsAny
from pydantic.alias_generators import to_camel

from gigsync.models.domain.enums import (
    NotificationReason,
    PlatformAchievementType,
    PlatformConnectionState,
)


class PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlatformRatingPayload(PayloadModel):
    value: float
    min: float
    max: float
    is_successful: bool


class PlatformReviewPayload(PayloadModel):
    review_id: str
    review_date: date | None = None
    rating: PlatformRatingPayload | None = None
    review_heading: str | None = None
    review_text: str | None = None
    reviewer_name: str | None = None
    reviewer_avatar_uri: str | None = None


class PlatformAchievementScorePayload(PayloadModel):
    value: str
    label: str


class PlatformAchievementPayload(PayloadModel):
    achievement_id: str
    name: str
    achievement_platform_type: str
    achievement_type: PlatformAchievementType
    description: str | None = None
    image_url: str | None = None
    score: PlatformAchievementScorePayload | None = None


class PlatformDataPayload(PayloadModel):
    number_of_gigs: int
    number_of_ratings: int
    number_of_ratings_that_are_deemed_successful: int
    period_start: date | None = None
    period_end: date | None = None
    average_rating: PlatformRatingPayload | None = None


class FullPlatformDataPayload(PlatformDataPayload):
    reviews: list[PlatformReviewPayload] | None = None
    achievements: list[PlatformAchievementPayload] | None = None


class PlatformConnectionUpdateNotificationPayload(PayloadModel):
    platform_id: uuid.UUID
    platform_name: str
    platform_connection_state: PlatformConnectionState
    user_id: uuid.UUID
    updated: int
    reason: NotificationReason
    app_secret: str
    platform_data: SerializeAsAny[PlatformDataPayload] | None = None

    def to_json_body(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class EmailVerificationNotificationPayload(PayloadModel):
    user_id: uuid.UUID
    email: str
    verified: bool
    shared_secret: str

    def to_json_body(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
