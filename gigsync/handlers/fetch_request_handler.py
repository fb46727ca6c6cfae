"""
Starts a data fetch for one platform connection.

Creates the sync log of the fetch cycle and hands the connection to the
fetcher of its integration type. Integration types without a fetcher, and
connection variants a fetcher cannot handle, are forwarded to the error
queue with a Failed step on the log.
"""

from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.integrations.base import DataFetcherBase, FetchStartOutcome
from gigsync.integrations.freelancer.data_fetcher import freelancer_data_fetcher
from gigsync.integrations.gig_platform.data_fetcher import gig_platform_data_fetcher
from gigsync.models.domain.enums import (
    DataSyncStepState,
    DataSyncStepType,
    PlatformIntegrationType,
)
from gigsync.models.domain.sync_log_domain import DataSyncLog
from gigsync.models.domain.user_domain import UnsupportedConnectionInfoError, User
from gigsync.models.messages import FetchDataForPlatformConnectionMessage
from gigsync.services.messaging.message_bus import MessageContext
from gigsync.services.sync_log_service import SyncLogService, make_step, sync_log_service

logger = get_logger(__name__)


def default_fetchers() -> dict[PlatformIntegrationType, DataFetcherBase]:
    return {
        PlatformIntegrationType.GIG_DATA_PLATFORM: gig_platform_data_fetcher,
        PlatformIntegrationType.FREELANCER: freelancer_data_fetcher,
    }


class FetchRequestHandler:
    def __init__(
        self,
        session_factory=open_session,
        fetchers: dict[PlatformIntegrationType, DataFetcherBase] | None = None,
        sync_logs: SyncLogService | None = None,
    ):
        self.session_factory = session_factory
        self.fetchers = fetchers if fetchers is not None else default_fetchers()
        self.sync_logs = sync_logs or sync_log_service

    async def handle(
        self, message: FetchDataForPlatformConnectionMessage, context: MessageContext
    ) -> FetchStartOutcome | None:
        log_fields = {
            "user_id": message.user_id,
            "platform_id": message.platform_id,
            "integration_type": message.integration_type.value,
        }
        logger.info("Starting data fetch for platform connection", **log_fields)

        session = self.session_factory()
        user = await session.load(User, message.user_id)
        connection = user.find_connection(message.platform_id) if user else None
        if connection is None:
            reason = "Platform connection for user and platform does not exist. Moved to error queue."
            logger.error(reason, **log_fields)
            await context.forward_to_error(reason)
            return None

        if connection.is_deleted:
            logger.warning("Platform connection was removed, skipping data fetch", **log_fields)
            return None

        sync_log = await self.sync_logs.start_log(session, user.id, message.platform_id)

        fetcher = self.fetchers.get(message.integration_type)
        if fetcher is None:
            reason = "Data fetch for given platform integration type not implemented. Moved to error queue."
            await self._fail(session, context, sync_log, connection, reason, log_fields)
            return None

        try:
            outcome = await fetcher.start_data_fetch(session, user.id, connection, sync_log.id)
        except UnsupportedConnectionInfoError as e:
            reason = "Unsupported connection authentication type. Moved to error queue."
            log_fields["connection_kind"] = e.kind.value
            await self._fail(session, context, sync_log, connection, reason, log_fields)
            return None

        sync_log.append(make_step(DataSyncStepType.PLATFORM_DATA_FETCH, DataSyncStepState.STARTED))
        if outcome == FetchStartOutcome.CONNECTION_REMOVED:
            logger.warning(
                "Connection is no longer valid and will be marked as deleted", **log_fields
            )

        await session.save_changes()
        logger.info(
            "Data fetch initialized", sync_log_id=sync_log.id, outcome=outcome.value, **log_fields
        )
        return outcome

    async def _fail(self, session, context, sync_log: DataSyncLog, connection, reason, log_fields):
        logger.error(reason, sync_log_id=sync_log.id, **log_fields)
        connection.mark_data_fetch_failed()
        sync_log.append(
            make_step(DataSyncStepType.PLATFORM_DATA_FETCH, DataSyncStepState.FAILED, log_message=reason)
        )
        await session.save_changes()
        await context.forward_to_error(reason)


# Global instance
fetch_request_handler = FetchRequestHandler()
