"""
Platform data persistence.

Turns an integration-neutral PlatformDataFetchResult into the user's
PlatformData snapshot for a platform. Ratings are scaled with the platform's
rating info; reviews keep a link to their rating by identifier.
"""

from datetime import datetime

from gigsync.db.session import DocumentSession
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.catalog_domain import Platform, RatingInfo
from gigsync.models.domain.platform_data_domain import (
    Achievement,
    AchievementScore,
    PlatformData,
    PlatformDataFetchResult,
    Rating,
    RatingDataFetchResult,
    Review,
)
from gigsync.models.domain.user_domain import utc_now

logger = get_logger(__name__)


def _to_rating(result: RatingDataFetchResult, rating_info: RatingInfo) -> Rating:
    return Rating(
        identifier=result.identifier,
        value=result.value,
        min=rating_info.min_rating,
        max=rating_info.max_rating,
        success_limit=rating_info.rating_success_limit,
    )


class PlatformDataService:
    async def get_platform_data(
        self, session: DocumentSession, user_id: str, platform_id: str
    ) -> PlatformData | None:
        return await session.query_one(PlatformData, user_id=user_id, platform_id=platform_id)

    async def remove_platform_data(
        self, session: DocumentSession, user_id: str, platform_id: str
    ) -> bool:
        platform_data = await self.get_platform_data(session, user_id, platform_id)
        if platform_data is None:
            return False
        session.delete(platform_data)
        return True

    async def add_platform_data(
        self,
        session: DocumentSession,
        user_id: str,
        platform: Platform,
        result: PlatformDataFetchResult,
        now: datetime | None = None,
    ) -> PlatformData:
        """
        Replace the snapshot for (user, platform) with a fetch result.

        The raw payload is appended to the bounded raw data log; everything else
        is overwritten.
        """
        now = now or utc_now()
        platform_data = await self.get_platform_data(session, user_id, platform.id)
        if platform_data is None:
            platform_data = PlatformData(user_id=user_id, platform_id=platform.id)
            session.store_entity(platform_data)

        if result.raw_data is not None:
            platform_data.add_raw_data(result.raw_data, now)

        rating_info = platform.rating_info
        ratings = [_to_rating(rating, rating_info) for rating in result.ratings]
        rating_ids = {rating.identifier for rating in ratings}

        reviews = []
        for review in result.reviews:
            rating_id = review.rating_identifier if review.rating_identifier in rating_ids else None
            reviews.append(
                Review(
                    review_identifier=review.review_identifier,
                    review_date=review.review_date,
                    rating_id=rating_id,
                    review_heading=review.review_heading,
                    review_text=review.review_text,
                    reviewer_name=review.reviewer_name,
                    reviewer_avatar_uri=review.reviewer_avatar_uri,
                )
            )

        achievements = [
            Achievement(
                achievement_identifier=a.achievement_identifier,
                name=a.name,
                achievement_platform_type=a.achievement_platform_type,
                achievement_type=a.achievement_type,
                description=a.description,
                image_uri=a.image_uri,
                score=AchievementScore(value=a.score.value, label=a.score.label) if a.score else None,
            )
            for a in result.achievements
        ]

        platform_data.number_of_gigs = result.number_of_gigs
        platform_data.period_start = result.period_start
        platform_data.period_end = result.period_end
        platform_data.average_rating = (
            _to_rating(result.average_rating, rating_info) if result.average_rating else None
        )
        platform_data.ratings = ratings
        platform_data.reviews = reviews
        platform_data.achievements = achievements
        platform_data.last_updated = now

        logger.info(
            "Platform data updated",
            user_id=user_id,
            platform_id=platform.id,
            number_of_gigs=result.number_of_gigs,
            ratings=len(ratings),
            reviews=len(reviews),
            achievements=len(achievements),
        )
        return platform_data


# Global instance
platform_data_service = PlatformDataService()
