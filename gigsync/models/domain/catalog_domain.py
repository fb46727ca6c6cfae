# models/domain/catalog_domain.py
"""Subscriber apps and the external platforms users connect to."""

import uuid
from typing import ClassVar

from pydantic import BaseModel, Field

from gigsync.models.domain.enums import (
    PlatformAuthenticationMechanism,
    PlatformDataClaim,
    PlatformIntegrationType,
)


class App(BaseModel):
    """A subscriber application receiving webhook notifications."""

    __collection__: ClassVar[str] = "apps"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    application_id: str
    name: str
    secret_key: str
    notification_endpoint: str | None = None
    email_verification_notification_endpoint: str | None = None
    default_data_claim: PlatformDataClaim = PlatformDataClaim.AGGREGATED
    is_inactive: bool = False


class RatingInfo(BaseModel):
    min_rating: float = 1.0
    max_rating: float = 5.0
    rating_success_limit: float = 3.0


class Platform(BaseModel):
    __collection__: ClassVar[str] = "platforms"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    integration_type: PlatformIntegrationType
    authentication_mechanism: PlatformAuthenticationMechanism
    # None means connections to this platform are never polled automatically
    data_poll_interval_seconds: int | None = Field(default=None, gt=0)
    rating_info: RatingInfo = Field(default_factory=RatingInfo)
    is_inactive: bool = False
