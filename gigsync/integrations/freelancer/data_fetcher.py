"""
Data fetcher for Freelancer.

Fetching is synchronous: profile and reviews are read with the user's OAuth
token and the result is reported in the same unit of work. An expired token
is refreshed first and written back onto the connection.
"""

from datetime import UTC, datetime

from gigsync.db.session import DocumentSession
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.integrations.base import DataFetcherBase, FetchStartOutcome
from gigsync.integrations.freelancer.api_client import (
    FreelancerApiClient,
    FreelancerOAuthClient,
    FreelancerUnauthorizedError,
)
from gigsync.models.api.freelancer_api import FreelancerReviewResponse, FreelancerUserInfo
from gigsync.models.domain.enums import (
    ConnectionInfoKind,
    PlatformAchievementType,
    PlatformConnectionDeleteReason,
)
from gigsync.models.domain.platform_data_domain import (
    AchievementFetchResult,
    AchievementScoreFetchResult,
    PlatformDataFetchResult,
    RatingDataFetchResult,
    ReviewDataFetchResult,
)
from gigsync.models.domain.user_domain import (
    PlatformConnection,
    UnsupportedConnectionInfoError,
    utc_now,
)

logger = get_logger(__name__)

FREELANCER_WEB_URL = "https://www.freelancer.com"


def _from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=UTC)


def map_achievements(profile: FreelancerUserInfo) -> list[AchievementFetchResult]:
    achievements = []
    for qualification in profile.qualifications or []:
        achievements.append(
            AchievementFetchResult(
                achievement_identifier=f"freelancer_qualification_{qualification.id}",
                name=qualification.name,
                achievement_platform_type="qualification",
                achievement_type=PlatformAchievementType.QUALIFICATION_ASSESSMENT,
                description=qualification.description,
                image_uri=f"{FREELANCER_WEB_URL}{qualification.icon_url or ''}",
                score=AchievementScoreFetchResult(
                    value=f"{qualification.score_percentage:g}", label="percent"
                ),
            )
        )

    for badge in profile.badges or []:
        achievements.append(
            AchievementFetchResult(
                achievement_identifier=f"freelancer_badge_{badge.id}",
                name=badge.name,
                achievement_platform_type="badge",
                achievement_type=PlatformAchievementType.BADGE,
                description=badge.description,
                image_uri=f"{FREELANCER_WEB_URL}{badge.icon_url or ''}",
            )
        )
    return achievements


def map_ratings_and_reviews(
    reviews: FreelancerReviewResponse,
) -> tuple[list[RatingDataFetchResult], list[ReviewDataFetchResult]]:
    ratings = []
    mapped_reviews = []
    for review in reviews.result.reviews:
        reviewer = reviews.result.users.get(str(review.from_user_id))
        avatar = f"https:{reviewer.avatar_cdn}" if reviewer and reviewer.avatar_cdn else None

        rating = RatingDataFetchResult(value=review.rating)
        ratings.append(rating)
        mapped_reviews.append(
            ReviewDataFetchResult(
                review_identifier=f"freelancer_{review.review_context.context_id}",
                review_date=_from_unix(review.time_submitted),
                rating_identifier=rating.identifier,
                review_text=review.description,
                reviewer_name=reviewer.display_name if reviewer else None,
                reviewer_avatar_uri=avatar,
            )
        )
    return ratings, mapped_reviews


class FreelancerDataFetcher(DataFetcherBase):
    integration_name = "freelancer"

    def __init__(
        self,
        api_client: FreelancerApiClient | None = None,
        oauth_client: FreelancerOAuthClient | None = None,
    ):
        self._api_client = api_client
        self.oauth_client = oauth_client or FreelancerOAuthClient()

    @property
    def api_client(self) -> FreelancerApiClient:
        if self._api_client is None:
            self._api_client = FreelancerApiClient()
        return self._api_client

    async def start_data_fetch(
        self,
        session: DocumentSession,
        user_id: str,
        connection: PlatformConnection,
        sync_log_id: str | None = None,
        now: datetime | None = None,
    ) -> FetchStartOutcome:
        """
        Fetch profile and reviews and report the result.

        Raises:
            UnsupportedConnectionInfoError: If the connection is not an OAuth
                connection with a token
            FreelancerApiError: On transient Freelancer failures
        """
        info = connection.connection_info
        if info.kind != ConnectionInfoKind.OAUTH or info.token is None:
            raise UnsupportedConnectionInfoError(info.kind, operation="freelancer_start_data_fetch")

        now = now or utc_now()
        platform_id = connection.platform_id

        try:
            if info.token.has_expired(now):
                logger.info("Freelancer token has expired, refreshing", user_id=user_id)
                info.token = await self.oauth_client.refresh_token(info.token)

            profile, raw_profile = await self.api_client.get_user_profile(info.token.access_token)
            reviews, raw_reviews = await self.api_client.get_reviews(
                info.token.access_token, profile.result.id
            )
        except FreelancerUnauthorizedError as e:
            logger.info(
                "Freelancer consent seems to have been revoked, removing connection",
                user_id=user_id,
                platform_id=platform_id,
                operation=e.operation,
            )
            self.complete_data_fetch_with_connection_removed(
                session,
                user_id,
                platform_id,
                PlatformConnectionDeleteReason.NOT_AUTHORIZED,
                sync_log_id,
            )
            return FetchStartOutcome.CONNECTION_REMOVED

        user_info = profile.result
        ratings, mapped_reviews = map_ratings_and_reviews(reviews)
        completed_jobs = user_info.reputation.entire_history.complete

        result = PlatformDataFetchResult(
            number_of_gigs=completed_jobs,
            period_start=_from_unix(user_info.registration_date),
            period_end=now,
            average_rating=(
                RatingDataFetchResult(value=user_info.reputation.entire_history.overall)
                if completed_jobs
                else None
            ),
            ratings=ratings,
            reviews=mapped_reviews,
            achievements=map_achievements(user_info),
            raw_data=f'{{"data": [{raw_profile}, {raw_reviews}]}}',
        )
        self.complete_data_fetch(session, user_id, platform_id, result, sync_log_id)

        logger.info(
            "Freelancer data fetch completed",
            user_id=user_id,
            platform_id=platform_id,
            number_of_gigs=completed_jobs,
            review_count=len(mapped_reviews),
        )
        return FetchStartOutcome.COMPLETED


# Global instance
freelancer_data_fetcher = FreelancerDataFetcher()
