# models/domain/platform_data_domain.py
"""
Fetched platform data: the integration-neutral fetch result produced by the
fetchers, and the persisted PlatformData snapshot per (user, platform).
"""

import uuid
from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from gigsync.models.domain.enums import PlatformAchievementType
from gigsync.models.domain.user_domain import utc_now

RAW_DATA_LOG_SIZE = 5


class RatingDataFetchResult(BaseModel):
    identifier: uuid.UUID = Field(default_factory=uuid.uuid4)
    value: float


class ReviewDataFetchResult(BaseModel):
    review_identifier: str
    review_date: datetime | None = None
    rating_identifier: uuid.UUID | None = None
    review_heading: str | None = None
    review_text: str | None = None
    reviewer_name: str | None = None
    reviewer_avatar_uri: str | None = None


class AchievementScoreFetchResult(BaseModel):
    value: str
    label: str


class AchievementFetchResult(BaseModel):
    achievement_identifier: str
    name: str
    achievement_platform_type: str
    achievement_type: PlatformAchievementType
    description: str | None = None
    image_uri: str | None = None
    score: AchievementScoreFetchResult | None = None


class PlatformDataFetchResult(BaseModel):
    number_of_gigs: int = 0
    period_start: datetime | None = None
    period_end: datetime | None = None
    average_rating: RatingDataFetchResult | None = None
    ratings: list[RatingDataFetchResult] = Field(default_factory=list)
    reviews: list[ReviewDataFetchResult] = Field(default_factory=list)
    achievements: list[AchievementFetchResult] = Field(default_factory=list)
    raw_data: str | None = None


class Rating(BaseModel):
    identifier: uuid.UUID = Field(default_factory=uuid.uuid4)
    value: float
    min: float
    max: float
    success_limit: float

    @property
    def is_successful(self) -> bool:
        return self.value >= self.success_limit


class Review(BaseModel):
    review_identifier: str
    review_date: datetime | None = None
    rating_id: uuid.UUID | None = None
    review_heading: str | None = None
    review_text: str | None = None
    reviewer_name: str | None = None
    reviewer_avatar_uri: str | None = None


class AchievementScore(BaseModel):
    value: str
    label: str


class Achievement(BaseModel):
    achievement_identifier: str
    name: str
    achievement_platform_type: str
    achievement_type: PlatformAchievementType
    description: str | None = None
    image_uri: str | None = None
    score: AchievementScore | None = None


class RawDataEntry(BaseModel):
    data: str
    created: datetime = Field(default_factory=utc_now)


class PlatformData(BaseModel):
    """Most recent snapshot of a user's data on one platform."""

    __collection__: ClassVar[str] = "platform_data"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    platform_id: str
    number_of_gigs: int = 0
    period_start: datetime | None = None
    period_end: datetime | None = None
    average_rating: Rating | None = None
    ratings: list[Rating] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)
    achievements: list[Achievement] = Field(default_factory=list)
    raw_data_log: list[RawDataEntry] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)

    def add_raw_data(self, data: str, now: datetime | None = None) -> None:
        """Append a raw payload, evicting the oldest beyond RAW_DATA_LOG_SIZE."""
        self.raw_data_log.append(RawDataEntry(data=data, created=now or utc_now()))
        if len(self.raw_data_log) > RAW_DATA_LOG_SIZE:
            self.raw_data_log = self.raw_data_log[-RAW_DATA_LOG_SIZE:]

    def find_rating(self, identifier: uuid.UUID | None) -> Rating | None:
        if identifier is None:
            return None
        return next((r for r in self.ratings if r.identifier == identifier), None)

    def number_of_successful_ratings(self) -> int:
        return sum(1 for rating in self.ratings if rating.is_successful)
