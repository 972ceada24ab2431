"""Unit tests for the retry scheduler service.

Tests RetrySchedulerService including:
- Job registration with correct configuration
- Immediate first sweep (next_run_time set to now)
- No overlapping sweeps (max_instances=1)
- Start/shutdown lifecycle and the shutdown event
- Synchronous trigger_now
- Failing sweeps keep the job scheduled
"""

import threading
import time
from datetime import datetime
from unittest.mock import Mock

from dispatch.notifications.retry import RetrySweepResult
from dispatch.scheduler import RETRY_JOB_ID, RetrySchedulerService


class TestRetrySchedulerService:
    """Test suite for RetrySchedulerService."""

    def test_initialization(self):
        """Test that the scheduler is configured but not started."""
        retry_callable = Mock()
        shutdown_event = threading.Event()

        scheduler = RetrySchedulerService(
            retry_callable=retry_callable,
            interval_seconds=900,
            shutdown_event=shutdown_event,
        )

        assert scheduler.interval_seconds == 900
        assert scheduler.retry_callable is retry_callable
        assert scheduler.shutdown_event is shutdown_event
        assert not scheduler.is_running()
        assert scheduler.get_next_run_time() is None

    def test_job_defaults(self):
        """Test sweeps never overlap, coalesce, and tolerate one interval of misfire."""
        scheduler = RetrySchedulerService(retry_callable=Mock(), interval_seconds=600)

        assert scheduler.scheduler._job_defaults["max_instances"] == 1
        assert scheduler.scheduler._job_defaults["coalesce"] is True
        assert scheduler.scheduler._job_defaults["misfire_grace_time"] == 600

    def test_start_and_shutdown(self):
        """Test the lifecycle sets the shutdown event."""
        shutdown_event = threading.Event()
        scheduler = RetrySchedulerService(
            retry_callable=Mock(), interval_seconds=3600, shutdown_event=shutdown_event
        )

        scheduler.start()
        assert scheduler.is_running()
        job = scheduler.scheduler.get_job(RETRY_JOB_ID)
        assert job.name == "Failed Delivery Retry Sweep"
        assert isinstance(scheduler.get_next_run_time(), datetime)

        scheduler.shutdown(wait=False)
        assert not scheduler.is_running()
        assert shutdown_event.is_set()

    def test_shutdown_without_start(self):
        """Test shutting down a scheduler that never started is safe."""
        shutdown_event = threading.Event()
        scheduler = RetrySchedulerService(
            retry_callable=Mock(), interval_seconds=3600, shutdown_event=shutdown_event
        )

        scheduler.shutdown()

        assert shutdown_event.is_set()

    def test_first_sweep_runs_immediately(self):
        """Test that the first sweep does not wait a full interval."""
        ran = threading.Event()
        scheduler = RetrySchedulerService(retry_callable=ran.set, interval_seconds=3600)

        scheduler.start()
        try:
            assert ran.wait(timeout=5)
        finally:
            scheduler.shutdown(wait=True)

    def test_shutdown_with_wait_lets_sweep_finish(self):
        """Test shutdown(wait=True) waits for the running sweep."""
        started = threading.Event()
        completed = threading.Event()

        def slow_sweep():
            started.set()
            time.sleep(0.3)
            completed.set()

        scheduler = RetrySchedulerService(retry_callable=slow_sweep, interval_seconds=3600)
        scheduler.start()
        assert started.wait(timeout=5)

        scheduler.shutdown(wait=True)

        assert completed.is_set()

    def test_trigger_now_runs_synchronously(self):
        """Test trigger_now calls the sweep in the current thread and returns its result."""
        result = RetrySweepResult(candidates=2, sent=2)
        retry_callable = Mock(return_value=result)
        scheduler = RetrySchedulerService(retry_callable=retry_callable, interval_seconds=3600)

        assert scheduler.trigger_now() is result
        retry_callable.assert_called_once_with()

    def test_failing_sweep_keeps_job_scheduled(self):
        """Test an exception in the sweep is logged and the job survives."""
        failed = threading.Event()

        def failing_sweep():
            failed.set()
            raise RuntimeError("database is locked")

        scheduler = RetrySchedulerService(retry_callable=failing_sweep, interval_seconds=3600)
        scheduler.start()
        try:
            assert failed.wait(timeout=5)
            time.sleep(0.1)
            assert scheduler.get_next_run_time() is not None
        finally:
            scheduler.shutdown(wait=True)

    def test_run_sweep_swallows_errors(self):
        """Test the job wrapper never propagates sweep failures."""
        scheduler = RetrySchedulerService(
            retry_callable=Mock(side_effect=ValueError("boom")), interval_seconds=3600
        )

        scheduler._run_sweep()

        scheduler.retry_callable.assert_called_once()
