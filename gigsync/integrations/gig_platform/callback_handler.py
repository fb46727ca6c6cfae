"""
Handles the gig data platform's data-update callback.

The callback names only a request id. The id is resolved through the fetch
correlation store back to the user, platform and sync log of the fetch that
issued it. A missing correlation is retried a few times, since the callback
can overtake the correlation write, and then dropped.
"""

from enum import Enum

from gigsync.config import settings
from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.integrations.gig_platform.data_fetcher import (
    GigPlatformDataFetcher,
    gig_platform_data_fetcher,
)
from gigsync.integrations.gig_platform.mapper import map_platform_data
from gigsync.models.api.gig_platform_api import (
    PlatformDataUpdateResultType,
    PlatformUserUpdateDataMessage,
)
from gigsync.models.domain.enums import PlatformConnectionDeleteReason, PlatformIntegrationType
from gigsync.models.messages import (
    PLATFORM_FETCH_REQUEST_QUEUE,
    FetchDataForPlatformConnectionMessage,
)
from gigsync.services.fetch_correlation_store import (
    FetchCorrelationStore,
    fetch_correlation_store,
)
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.messaging.retry_policy import read_retry_count

logger = get_logger(__name__)

CORRELATION_RETRY_HEADER = "gigsync-correlation-retry-count"

COMPLETES_WITHOUT_DATA = (
    PlatformDataUpdateResultType.SUCCESS,
    PlatformDataUpdateResultType.MALFORMED_DATA_RESPONSE,
)


class CallbackOutcome(str, Enum):
    COMPLETED = "completed"
    CONNECTION_REMOVED = "connection_removed"
    REFETCH_SCHEDULED = "refetch_scheduled"
    CORRELATION_RETRY = "correlation_retry"
    DROPPED = "dropped"


class GigPlatformCallbackHandler:
    def __init__(
        self,
        fetcher: GigPlatformDataFetcher | None = None,
        correlations: FetchCorrelationStore | None = None,
        session_factory=open_session,
    ):
        self.fetcher = fetcher or gig_platform_data_fetcher
        self.correlations = correlations or fetch_correlation_store
        self.session_factory = session_factory

    async def handle(
        self, message: PlatformUserUpdateDataMessage, context: MessageContext
    ) -> CallbackOutcome:
        logger.info(
            "Got gig platform data fetch result",
            request_id=message.request_id,
            result_type=message.result_type.value,
            has_platform_data=message.platform_data is not None,
        )

        correlation = await self.correlations.lookup(message.request_id)
        if correlation is None:
            return await self._handle_correlation_miss(message, context)

        user_id = correlation.user_id
        platform_id = correlation.platform_id
        sync_log_id = correlation.sync_log_id
        session = self.session_factory()

        if message.result_type == PlatformDataUpdateResultType.MALFORMED_DATA_RESPONSE:
            logger.warning(
                "Gig platform reported malformed data, completing fetch",
                request_id=message.request_id,
                user_id=user_id,
                platform_id=platform_id,
                malformed_upstream_data=True,
            )

        if message.platform_data is not None:
            result = map_platform_data(platform_id, message.platform_data)
            self.fetcher.complete_data_fetch(session, user_id, platform_id, result, sync_log_id)
            outcome = CallbackOutcome.COMPLETED

        elif message.result_type in COMPLETES_WITHOUT_DATA:
            self.fetcher.complete_data_fetch(session, user_id, platform_id, None, sync_log_id)
            outcome = CallbackOutcome.COMPLETED

        elif message.result_type == PlatformDataUpdateResultType.USER_NOT_FOUND:
            logger.info(
                "User not found on gig platform, removing connection",
                request_id=message.request_id,
                user_id=user_id,
                platform_id=platform_id,
            )
            self.fetcher.complete_data_fetch_with_connection_removed(
                session,
                user_id,
                platform_id,
                PlatformConnectionDeleteReason.USER_DID_NOT_EXIST,
                sync_log_id,
            )
            outcome = CallbackOutcome.CONNECTION_REMOVED

        else:
            logger.info(
                "Gig platform could not deliver data, scheduling new fetch",
                request_id=message.request_id,
                user_id=user_id,
                platform_id=platform_id,
                result_type=message.result_type.value,
                delay_seconds=settings.GIG_PLATFORM_REFETCH_DELAY_SECONDS,
            )
            session.defer(
                PLATFORM_FETCH_REQUEST_QUEUE,
                FetchDataForPlatformConnectionMessage(
                    user_id=user_id,
                    platform_id=platform_id,
                    integration_type=PlatformIntegrationType.GIG_DATA_PLATFORM,
                ),
                settings.GIG_PLATFORM_REFETCH_DELAY_SECONDS,
            )
            outcome = CallbackOutcome.REFETCH_SCHEDULED

        await session.save_changes()
        await self.correlations.release(message.request_id)
        return outcome

    async def _handle_correlation_miss(
        self, message: PlatformUserUpdateDataMessage, context: MessageContext
    ) -> CallbackOutcome:
        retry_count = read_retry_count(context.headers, CORRELATION_RETRY_HEADER)
        if retry_count < settings.CORRELATION_MAX_RETRIES:
            retry_count += 1
            logger.info(
                "No fetch correlation for request id yet, retrying later",
                request_id=message.request_id,
                retry_count=retry_count,
                delay_seconds=settings.CORRELATION_RETRY_DELAY_SECONDS,
            )
            await context.defer_local(
                settings.CORRELATION_RETRY_DELAY_SECONDS,
                {CORRELATION_RETRY_HEADER: str(retry_count)},
            )
            return CallbackOutcome.CORRELATION_RETRY

        logger.error(
            "Could not find fetch correlation for request id, ignoring callback",
            request_id=message.request_id,
            retry_count=retry_count,
        )
        return CallbackOutcome.DROPPED


# Global instance
gig_platform_callback_handler = GigPlatformCallbackHandler()
