"""Background job execution for sync, metadata, thumbnail and download work."""

import logging
import uuid
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class JobQueue:
    """Runs jobs on an APScheduler thread pool.

    Each enqueued job is an independent one-shot run that may execute on
    any worker; there is no mutual exclusion between jobs for the same
    entity. Exceptions raised by a job are logged by APScheduler.
    """

    def __init__(self, workers: int = 4):
        """Initialize the queue.

        Args:
            workers: Number of worker threads
        """
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(workers)},
            job_defaults={"coalesce": False, "misfire_grace_time": None},
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Job queue started")

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Job queue stopped")

    def enqueue(
        self, func: Callable[..., Any], *args: Any, name: Optional[str] = None
    ) -> str:
        """Schedule func(*args) to run as soon as a worker is free.

        Returns:
            The job id
        """
        job_id = f"{name or func.__name__}-{uuid.uuid4().hex[:8]}"
        self.scheduler.add_job(
            func,
            trigger="date",
            args=list(args),
            id=job_id,
            name=name or func.__name__,
        )
        logger.debug(f"Enqueued job {job_id}")
        return job_id

    def every(self, func: Callable[..., Any], minutes: int, job_id: str) -> None:
        """Run func periodically; overlapping runs of the same job are skipped."""
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
        )


class InlineJobQueue:
    """Runs enqueued work immediately in the calling thread.

    Used by one-shot commands and tests. Job exceptions are logged and do
    not propagate, matching what the scheduler does for background jobs.
    """

    def __init__(self):
        self.completed = 0
        self.failed = 0

    def enqueue(
        self, func: Callable[..., Any], *args: Any, name: Optional[str] = None
    ) -> str:
        job_name = name or func.__name__
        try:
            func(*args)
            self.completed += 1
        except Exception:
            self.failed += 1
            logger.exception(f"Job {job_name} raised an exception")
        return job_name
