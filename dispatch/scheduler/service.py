"""Scheduler service for the periodic retry sweep."""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dispatch.logging import get_logger

logger = get_logger(__name__, component="scheduler")

RETRY_JOB_ID = "delivery-retry"


class RetrySchedulerService:
    """
    Wraps APScheduler to run the failed-delivery sweep at a fixed interval.

    Uses BackgroundScheduler so the sweep runs on a worker thread while the
    main thread waits for signals and coordinates shutdown.
    """

    def __init__(
        self,
        retry_callable: Callable[[], Any],
        interval_seconds: int,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            retry_callable: Function called on each run (e.g. retry_service.retry_failed)
            interval_seconds: Interval between sweeps in seconds
            shutdown_event: Optional event set on shutdown for coordination
        """
        self.retry_callable = retry_callable
        self.interval_seconds = interval_seconds
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # sweeps never overlap
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the sweep job and start the scheduler.

        The first sweep runs immediately; later ones follow the interval.
        """
        trigger = IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc)

        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self._run_sweep,
            trigger=trigger,
            id=RETRY_JOB_ID,
            name="Failed Delivery Retry Sweep",
            replace_existing=True,
            next_run_time=next_run,
        )

        self.scheduler.start()

        logger.info(
            f"Retry scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shut the scheduler down.

        Args:
            wait: If True, wait for a running sweep to finish before returning
        """
        logger.info(
            "Shutting down retry scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Retry scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self) -> Any:
        """Run one sweep synchronously in the current thread."""
        logger.info(
            "Triggering immediate retry sweep",
            extra={"event": "scheduler.trigger_now"},
        )
        return self.retry_callable()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        """Next scheduled sweep, or None if the job is not registered."""
        job = self.scheduler.get_job(RETRY_JOB_ID)
        return job.next_run_time if job else None

    def _run_sweep(self) -> None:
        # A failing sweep must not unschedule the job
        try:
            self.retry_callable()
        except Exception as e:
            logger.error(
                f"Retry sweep failed: {e}",
                extra={"event": "scheduler.job.failed", "error_type": type(e).__name__},
                exc_info=True,
            )
