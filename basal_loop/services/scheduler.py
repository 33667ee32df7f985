"""Background job scheduler.

One AsyncIOScheduler per process, created on first use inside the running
event loop. Control-loop jobs are interval jobs that never overlap: a
tick that overruns its interval makes the next one wait, and missed runs
collapse into a single run.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from basal_loop.logging_config import get_logger

logger = get_logger(__name__)

_scheduler: AsyncIOScheduler | None = None


def get_scheduler() -> AsyncIOScheduler:
    """Return the process scheduler, starting it on first call.

    Must be called from within the running event loop.
    """
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
        _scheduler.start()
        logger.info("Background scheduler started")
    return _scheduler


def schedule_interval_job(
    scheduler: AsyncIOScheduler,
    job_id: str,
    func: Callable[[], Awaitable[None]],
    *,
    interval_seconds: int,
    first_run_delay_seconds: int = 0,
    name: str | None = None,
) -> Job:
    """Add (or replace) a non-overlapping interval job.

    Args:
        scheduler: Scheduler to add the job to
        job_id: Stable job id; an existing job with this id is replaced
        func: Coroutine function run on every interval
        interval_seconds: Seconds between runs
        first_run_delay_seconds: Delay before the first run
        name: Human-readable job name

    Returns:
        The scheduled job
    """
    first_run = datetime.now(UTC) + timedelta(seconds=first_run_delay_seconds)
    job = scheduler.add_job(
        func,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=job_id,
        name=name or job_id,
        next_run_time=first_run,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.debug(
        "Interval job scheduled",
        job_id=job_id,
        interval_seconds=interval_seconds,
        first_run=first_run.isoformat(),
    )
    return job


def cancel_job(scheduler: AsyncIOScheduler, job_id: str) -> bool:
    """Remove a job. Returns False if it was not scheduled."""
    try:
        scheduler.remove_job(job_id)
    except JobLookupError:
        return False
    return True


def stop_scheduler() -> None:
    """Shut down the process scheduler without waiting for running jobs."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")
