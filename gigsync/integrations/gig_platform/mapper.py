"""Maps gig data platform callback data onto the integration-neutral fetch result."""

import uuid
from statistics import mean

from gigsync.models.api.gig_platform_api import (
    GigAchievement,
    GigAchievementType,
    GigPlatformData,
)
from gigsync.models.domain.enums import PlatformAchievementType
from gigsync.models.domain.platform_data_domain import (
    AchievementFetchResult,
    AchievementScoreFetchResult,
    PlatformDataFetchResult,
    RatingDataFetchResult,
    ReviewDataFetchResult,
)

ACHIEVEMENT_TYPES = {
    GigAchievementType.BADGE: PlatformAchievementType.BADGE,
    GigAchievementType.QUALIFICATION_ASSESSMENT: PlatformAchievementType.QUALIFICATION_ASSESSMENT,
}


def _format_score(value: float) -> str:
    return f"{value:g}"


def _map_achievement(achievement: GigAchievement) -> AchievementFetchResult:
    achievement_type = ACHIEVEMENT_TYPES.get(achievement.type)
    if achievement_type is None:
        raise ValueError(f"Unknown platform achievement type {achievement.type}")

    score = None
    if achievement.score is not None:
        score = AchievementScoreFetchResult(
            value=_format_score(achievement.score.value), label=achievement.score.label
        )

    return AchievementFetchResult(
        achievement_identifier=achievement.id or str(uuid.uuid4()),
        name=achievement.name,
        achievement_platform_type=achievement.type.value,
        achievement_type=achievement_type,
        description=achievement.description,
        image_uri=achievement.badge_icon_uri,
        score=score,
    )


def map_platform_data(platform_id: str, data: GigPlatformData) -> PlatformDataFetchResult:
    """
    Build a fetch result from callback data.

    Every rating becomes its own RatingDataFetchResult. A review is linked to
    the first rating of the same interaction, and its identifier is
    ``{platform_id}_{interaction_id}``.
    """
    interactions = data.interactions

    starts = [i.period.start for i in interactions if i.period and i.period.start]
    ends = [i.period.end for i in interactions if i.period and i.period.end]

    ratings: list[RatingDataFetchResult] = []
    reviews: list[ReviewDataFetchResult] = []
    for interaction in interactions:
        interaction_id = interaction.id or str(uuid.uuid4())

        interaction_ratings = [
            RatingDataFetchResult(value=rating.value) for rating in interaction.outcome.ratings
        ]
        ratings.extend(interaction_ratings)

        review = interaction.outcome.review
        if review is None:
            continue

        client = interaction.client
        reviews.append(
            ReviewDataFetchResult(
                review_identifier=f"{platform_id}_{interaction_id}",
                review_date=interaction.period.end if interaction.period else None,
                rating_identifier=(
                    interaction_ratings[0].identifier if interaction_ratings else None
                ),
                review_heading=review.title,
                review_text=review.text,
                reviewer_name=client.name if client else None,
                reviewer_avatar_uri=client.photo_uri if client else None,
            )
        )

    average_rating = None
    if ratings:
        average_rating = RatingDataFetchResult(value=mean(r.value for r in ratings))

    return PlatformDataFetchResult(
        number_of_gigs=len(interactions),
        period_start=min(starts) if starts else None,
        period_end=max(ends) if ends else None,
        average_rating=average_rating,
        ratings=ratings,
        reviews=reviews,
        achievements=[_map_achievement(a) for a in data.achievements],
        raw_data=data.raw_data,
    )
