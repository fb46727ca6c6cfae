"""
SyncLogService - append-only audit trail of each fetch cycle.

A DataSyncLog is created when a fetch cycle starts; every later stage of the
cycle (fetch result, connection removal, each webhook delivery) appends one
step to it. Steps are never edited or removed.

Usage:
    sync_log = await sync_log_service.start_log(session, user.id, platform.id)
    await sync_log_service.add_step(session, sync_log.id, make_step(...))

    # Outside a unit of work (never raises)
    await sync_log_service.append_step(sync_log_id, step)
"""

from gigsync.db.session import DocumentSession, open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.enums import DataSyncStepState, DataSyncStepType
from gigsync.models.domain.sync_log_domain import DataSyncLog, DataSyncStep

logger = get_logger(__name__)


def make_step(
    step_type: DataSyncStepType,
    state: DataSyncStepState,
    log_message: str | None = None,
    app_id: str | None = None,
    app_webhook_url: str | None = None,
) -> DataSyncStep:
    return DataSyncStep(
        type=step_type,
        state=state,
        log_message=log_message,
        app_id=app_id,
        app_webhook_url=app_webhook_url,
    )


class SyncLogService:
    def __init__(self, session_factory=open_session):
        self.session_factory = session_factory

    async def start_log(self, session: DocumentSession, user_id: str, platform_id: str) -> DataSyncLog:
        """Create the log for a new fetch cycle. It is persisted with the session."""
        sync_log = DataSyncLog(user_id=user_id, platform_id=platform_id)
        session.store_entity(sync_log)
        logger.debug(
            "Data sync log created",
            sync_log_id=sync_log.id,
            user_id=user_id,
            platform_id=platform_id,
        )
        return sync_log

    async def add_step(
        self, session: DocumentSession, sync_log_id: str | None, step: DataSyncStep
    ) -> bool:
        """
        Append a step to a log inside the caller's unit of work.

        Returns False when the log does not exist.
        """
        sync_log = await session.load(DataSyncLog, sync_log_id)
        if sync_log is None:
            if sync_log_id:
                logger.warning(
                    "Data sync log not found, step not recorded",
                    sync_log_id=sync_log_id,
                    step_type=step.type.value,
                    step_state=step.state.value,
                )
            return False

        sync_log.append(step)
        return True

    async def append_step(self, sync_log_id: str | None, step: DataSyncStep) -> bool:
        """
        Append a step in its own unit of work.

        Best effort: failures are logged and reported as False, never raised.
        """
        if not sync_log_id:
            return False

        try:
            session = self.session_factory()
            added = await self.add_step(session, sync_log_id, step)
            if added:
                await session.save_changes()
            return added
        except Exception as e:
            logger.error(
                "Failed to append data sync step",
                sync_log_id=sync_log_id,
                step_type=step.type.value,
                step_state=step.state.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


# Global instance
sync_log_service = SyncLogService()
