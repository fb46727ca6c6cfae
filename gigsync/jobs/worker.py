"""
Background worker entrypoint.

    gigsync-worker message_pump     # consume every queue
    gigsync-worker fetch_trigger    # send fetch triggers on a timer
    gigsync-worker all              # both in one process

The job name may also come from the WORKER_JOB environment variable. SIGTERM
and SIGINT cancel the running job so its cleanup (closing the pool and Redis)
runs before the process exits.
"""

import asyncio
import os
import signal
import sys
from collections.abc import Awaitable, Callable

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger, setup_logging
from gigsync.jobs.fetch_trigger_job import run_fetch_trigger_loop, start_fetch_trigger_scheduler
from gigsync.jobs.message_pump import pump_resources, run_message_pump, start_message_pump

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

DEFAULT_JOB = "message_pump"


async def run_all_jobs() -> None:
    """
    Timer and message pump side by side over one set of connections.

    The connections are opened and closed here, once, so neither job can close
    them under the other. One job failing cancels the other.
    """
    async with pump_resources():
        async with asyncio.TaskGroup() as group:
            group.create_task(run_fetch_trigger_loop(), name="fetch_trigger")
            group.create_task(run_message_pump(), name="message_pump")


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "fetch_trigger": start_fetch_trigger_scheduler,
    "message_pump": start_message_pump,
    "all": run_all_jobs,
}


def _requested_job(argv: list[str]) -> str:
    if len(argv) > 1:
        return argv[1]
    return os.getenv("WORKER_JOB", DEFAULT_JOB)


async def run_worker(job_name: str | None = None) -> None:
    """Run one registered job until it finishes or is cancelled."""
    name = (job_name or _requested_job(sys.argv)).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(
            f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}"
        )

    logger.info("Starting background worker", job=name, environment=settings.environment)
    await job()


async def _run_until_signalled(job_name: str) -> None:
    task = asyncio.create_task(run_worker(job_name), name=f"worker:{job_name}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, task.cancel)

    try:
        await task
    except asyncio.CancelledError:
        logger.info("Background worker stopped by signal", job=job_name)


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(_run_until_signalled(_requested_job(sys.argv)))


if __name__ == "__main__":
    main()
