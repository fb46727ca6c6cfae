"""
Data fetcher for platforms integrated through the gig data platform.

Fetching is asynchronous: the fetcher asks the platform for the latest data
and remembers the returned request id. The data arrives later on the
callback queue, see callback_handler.
"""

from gigsync.db.session import DocumentSession
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.integrations.base import DataFetcherBase, FetchStartOutcome
from gigsync.integrations.gig_platform.api_client import GigPlatformApiClient
from gigsync.models.domain.enums import PlatformConnectionDeleteReason
from gigsync.models.domain.user_domain import (
    OAuthOrEmailConnectionInfo,
    PlatformConnection,
    UnsupportedConnectionInfoError,
)
from gigsync.services.fetch_correlation_store import (
    FetchCorrelationStore,
    fetch_correlation_store,
)

logger = get_logger(__name__)


class GigPlatformDataFetcher(DataFetcherBase):
    integration_name = "gig_data_platform"

    def __init__(
        self,
        api_client: GigPlatformApiClient | None = None,
        correlations: FetchCorrelationStore | None = None,
    ):
        self._api_client = api_client
        self.correlations = correlations or fetch_correlation_store

    @property
    def api_client(self) -> GigPlatformApiClient:
        if self._api_client is None:
            self._api_client = GigPlatformApiClient()
        return self._api_client

    async def start_data_fetch(
        self,
        session: DocumentSession,
        user_id: str,
        connection: PlatformConnection,
        sync_log_id: str | None = None,
    ) -> FetchStartOutcome:
        """
        Request the latest data for a connection.

        Raises:
            UnsupportedConnectionInfoError: For OAuth connections, which the gig
                data platform does not support yet
            GigPlatformApiError: If the platform could not be reached
            FetchCorrelationError: If the request id could not be stored
        """
        info = OAuthOrEmailConnectionInfo.from_connection_info(connection.connection_info)
        if info.is_oauth_authentication or not info.email:
            raise UnsupportedConnectionInfoError(
                connection.connection_info.kind, operation="gig_platform_start_data_fetch"
            )

        result = await self.api_client.request_latest(connection.external_platform_id, info.email)
        logger.info(
            "Requested latest data from gig platform",
            user_id=user_id,
            platform_id=connection.platform_id,
            platform_name=connection.platform_name,
            external_platform_id=str(connection.external_platform_id),
            request_id=result.request_id,
            success=result.success,
        )

        if not result.success:
            # The user has withdrawn consent for us to read their data
            logger.info(
                "Gig platform refused the data request, removing connection",
                user_id=user_id,
                platform_id=connection.platform_id,
                platform_message=result.message,
            )
            self.complete_data_fetch_with_connection_removed(
                session,
                user_id,
                connection.platform_id,
                PlatformConnectionDeleteReason.NOT_AUTHORIZED,
                sync_log_id,
            )
            return FetchStartOutcome.CONNECTION_REMOVED

        await self.correlations.register(
            result.request_id, user_id, connection.platform_id, sync_log_id
        )
        return FetchStartOutcome.AWAITING_CALLBACK


# Global instance
gig_platform_data_fetcher = GigPlatformDataFetcher()
