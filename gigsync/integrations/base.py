"""
Shared plumbing for platform data fetchers.

A fetcher never writes the connection or platform data itself. It reports the
outcome of a fetch as a message on the caller's session, and the
fetch-complete and connection-removed handlers apply it.
"""

from enum import Enum

from gigsync.db.session import DocumentSession
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.enums import PlatformConnectionDeleteReason
from gigsync.models.domain.platform_data_domain import PlatformDataFetchResult
from gigsync.models.messages import (
    CONNECTION_REMOVED_QUEUE,
    FETCH_COMPLETE_QUEUE,
    DataFetchCompleteMessage,
    PlatformConnectionRemovedMessage,
)

logger = get_logger(__name__)


class FetchStartOutcome(str, Enum):
    # Request accepted, the result arrives later as a callback
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"
    CONNECTION_REMOVED = "connection_removed"


class DataFetcherBase:
    integration_name = "base"

    def complete_data_fetch(
        self,
        session: DocumentSession,
        user_id: str,
        platform_id: str,
        result: PlatformDataFetchResult | None,
        sync_log_id: str | None = None,
    ) -> None:
        session.send(
            FETCH_COMPLETE_QUEUE,
            DataFetchCompleteMessage(
                user_id=user_id,
                platform_id=platform_id,
                result=result,
                sync_log_id=sync_log_id,
            ),
        )
        logger.debug(
            "Data fetch completion queued",
            integration=self.integration_name,
            user_id=user_id,
            platform_id=platform_id,
            has_result=result is not None,
        )

    def complete_data_fetch_with_connection_removed(
        self,
        session: DocumentSession,
        user_id: str,
        platform_id: str,
        delete_reason: PlatformConnectionDeleteReason,
        sync_log_id: str | None = None,
    ) -> None:
        session.send(
            CONNECTION_REMOVED_QUEUE,
            PlatformConnectionRemovedMessage(
                user_id=user_id,
                platform_id=platform_id,
                delete_reason=delete_reason,
                sync_log_id=sync_log_id,
            ),
        )
        logger.info(
            "Connection removal queued after data fetch",
            integration=self.integration_name,
            user_id=user_id,
            platform_id=platform_id,
            delete_reason=delete_reason.value,
        )
