"""
Fetch scheduler: finds connections due for a data refresh and dispatches one
fetch request per connection.

Candidates come from a coarse index query over the users' connections (any
live, polled connection whose last completion is unset or at least the
smallest poll interval old). The precise ripeness rule is then applied to
every connection of every candidate. Marking a connection started and
queueing its fetch request are committed together in one save at the end of
the run.

Single fetch in flight is advisory: the start/completion markers keep this
scheduler from re-selecting a connection it just dispatched, but nothing stops
two scheduler processes from dispatching the same connection concurrently.
"""

from datetime import datetime, timedelta

from gigsync.db.session import open_session
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.user_domain import User, utc_now
from gigsync.models.messages import (
    PLATFORM_FETCH_REQUEST_QUEUE,
    FetchDataForPlatformConnectionMessage,
)

logger = get_logger(__name__)


class FetchSchedulerMetrics:
    """Metrics for one scheduler run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = utc_now()
        self.min_poll_interval_seconds: int | None = None
        self.candidate_users = 0
        self.connections_evaluated = 0
        self.fetches_dispatched = 0
        self.total_duration_seconds = 0.0
        self.skipped_reason: str | None = None

    def record_dispatch(self, user_id: str, platform_id: str):
        self.fetches_dispatched += 1
        logger.debug(
            "Data fetch dispatched",
            user_id=user_id,
            platform_id=platform_id,
            job_run="fetch_scheduler",
        )

    def finalize(self):
        self.total_duration_seconds = (utc_now() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        result = {
            "job_run": "fetch_scheduler",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "min_poll_interval_seconds": self.min_poll_interval_seconds,
            "candidate_users": self.candidate_users,
            "connections_evaluated": self.connections_evaluated,
            "fetches_dispatched": self.fetches_dispatched,
        }
        if self.skipped_reason:
            result["skipped"] = True
            result["reason"] = self.skipped_reason
        return result


class FetchScheduler:
    def __init__(self, session_factory=open_session):
        self.session_factory = session_factory
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.metrics = FetchSchedulerMetrics()

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Dispatch a fetch for every ripe connection.

        Returns:
            Dict: run metrics
        """
        if self.is_running:
            logger.warning("Fetch scheduler already running, skipping this trigger")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()
            now = now or utc_now()
            session = self.session_factory()

            min_interval = await session.store.min_poll_interval_seconds()
            if min_interval is None:
                logger.info("No platform connections with a poll interval, nothing to schedule")
                self.metrics.skipped_reason = "no_poll_intervals"
                self.metrics.finalize()
                return self.metrics.to_dict()

            self.metrics.min_poll_interval_seconds = min_interval
            cutoff = now - timedelta(seconds=min_interval)
            candidate_ids = await session.store.user_ids_possibly_ripe(cutoff)
            self.metrics.candidate_users = len(candidate_ids)

            users = await session.load_many(User, candidate_ids)
            for user in users:
                for connection in user.platform_connections:
                    self.metrics.connections_evaluated += 1
                    if not connection.is_ripe_for_data_fetch(now):
                        continue

                    connection.mark_data_fetch_started(now)
                    session.send(
                        PLATFORM_FETCH_REQUEST_QUEUE,
                        FetchDataForPlatformConnectionMessage(
                            user_id=user.id,
                            platform_id=connection.platform_id,
                            integration_type=connection.integration_type,
                        ),
                    )
                    self.metrics.record_dispatch(user.id, connection.platform_id)

            await session.save_changes()

            self.metrics.finalize()
            self.last_run_time = now
            metrics = self.metrics.to_dict()
            logger.info("Fetch scheduler run completed", **metrics)
            return metrics

        except Exception as e:
            logger.error("Fetch scheduler run failed", error=str(e), error_type=type(e).__name__)
            raise

        finally:
            self.is_running = False

    def get_status(self) -> dict:
        return {
            "job_name": "fetch_scheduler",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_run_metrics": self.metrics.to_dict() if self.last_run_time else None,
        }


# Global instance
fetch_scheduler = FetchScheduler()
