"""Builds the claim-scoped webhook payload sent to subscriber apps."""

from datetime import datetime

from gigsync.models.api.webhook_payload import (
    FullPlatformDataPayload,
    PlatformAchievementPayload,
    PlatformAchievementScorePayload,
    PlatformConnectionUpdateNotificationPayload,
    PlatformDataPayload,
    PlatformRatingPayload,
    PlatformReviewPayload,
)
from gigsync.models.domain.catalog_domain import App, Platform
from gigsync.models.domain.enums import (
    NotificationReason,
    PlatformConnectionState,
    PlatformDataClaim,
)
from gigsync.models.domain.platform_data_domain import PlatformData, Rating
from gigsync.models.domain.user_domain import User, utc_now


def _rating_payload(rating: Rating | None) -> PlatformRatingPayload | None:
    if rating is None:
        return None
    return PlatformRatingPayload(
        value=rating.value,
        min=rating.min,
        max=rating.max,
        is_successful=rating.is_successful,
    )


def _as_date(value: datetime | None):
    return value.date() if value is not None else None


def build_platform_data_payload(
    platform_data: PlatformData, claim: PlatformDataClaim
) -> PlatformDataPayload:
    """Summary for Aggregated subscribers; reviews and achievements only for Full."""
    summary = {
        "number_of_gigs": platform_data.number_of_gigs,
        "number_of_ratings": len(platform_data.ratings),
        "number_of_ratings_that_are_deemed_successful": platform_data.number_of_successful_ratings(),
        "period_start": _as_date(platform_data.period_start),
        "period_end": _as_date(platform_data.period_end),
        "average_rating": _rating_payload(platform_data.average_rating),
    }

    if claim != PlatformDataClaim.FULL:
        return PlatformDataPayload(**summary)

    reviews = [
        PlatformReviewPayload(
            review_id=review.review_identifier,
            review_date=_as_date(review.review_date),
            rating=_rating_payload(platform_data.find_rating(review.rating_id)),
            review_heading=review.review_heading,
            review_text=review.review_text,
            reviewer_name=review.reviewer_name,
            reviewer_avatar_uri=review.reviewer_avatar_uri,
        )
        for review in platform_data.reviews
    ]
    achievements = [
        PlatformAchievementPayload(
            achievement_id=achievement.achievement_identifier,
            name=achievement.name,
            achievement_platform_type=achievement.achievement_platform_type,
            achievement_type=achievement.achievement_type,
            description=achievement.description,
            image_url=achievement.image_uri,
            score=(
                PlatformAchievementScorePayload(
                    value=achievement.score.value, label=achievement.score.label
                )
                if achievement.score
                else None
            ),
        )
        for achievement in platform_data.achievements
    ]
    return FullPlatformDataPayload(**summary, reviews=reviews, achievements=achievements)


def build_notification_payload(
    user: User,
    app: App,
    platform: Platform,
    state: PlatformConnectionState,
    reason: NotificationReason,
    claim: PlatformDataClaim,
    platform_data: PlatformData | None = None,
    now: datetime | None = None,
) -> PlatformConnectionUpdateNotificationPayload:
    return PlatformConnectionUpdateNotificationPayload(
        platform_id=platform.external_id,
        platform_name=platform.name,
        platform_connection_state=state,
        user_id=user.external_id,
        updated=int((now or utc_now()).timestamp()),
        reason=reason,
        app_secret=app.secret_key,
        platform_data=(
            build_platform_data_payload(platform_data, claim) if platform_data is not None else None
        ),
    )
