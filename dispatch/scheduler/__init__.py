"""Scheduling module for the periodic failed-delivery retry sweep."""

from .service import RETRY_JOB_ID, RetrySchedulerService

__all__ = [
    "RetrySchedulerService",
    "RETRY_JOB_ID",
]
