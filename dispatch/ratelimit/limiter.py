"""Per-organization hourly/daily send caps.

Counters live on the organization's email_settings row. A check first rolls
over any window that has been open for at least an hour (or a day): that
counter is reset to zero and its window start moves to now. A call that resets
either window reports full remaining capacity for both caps; otherwise capacity
is compared against the stored counters.

All mutations for one organization are serialized through a per-organization
lock, and ``reserve`` performs check, reset and increment inside one lock hold
and one transaction so concurrent callers cannot over-send.
"""

import threading
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, Dict

from sqlalchemy.orm import Session

from dispatch.domain.models import RateLimitStatus
from dispatch.logging import get_logger
from dispatch.persistence.database import get_session
from dispatch.persistence.exceptions import RecordNotFoundError
from dispatch.persistence.repositories import EmailSettingsRepository
from dispatch.utils.timestamps import elapsed_days, elapsed_hours, utc_now

logger = get_logger(__name__, component="rate_limiter")


class RateLimiter:
    """Gatekeeps outbound volume per organization."""

    def __init__(
        self,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the limiter.

        Args:
            session_scope: Context manager factory yielding a transactional session
            clock: Source of the current UTC time (injectable for tests)
        """
        self.session_scope = session_scope
        self.clock = clock
        # One lock per organization seen; entries are never evicted
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, org_id: str) -> threading.Lock:
        """Return the lock serializing rate-limit mutations for ``org_id``."""
        with self._locks_guard:
            lock = self._locks.get(org_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[org_id] = lock
            return lock

    def check_and_maybe_reset(self, org_id: str) -> RateLimitStatus:
        """Roll over elapsed windows and report remaining capacity.

        Raises:
            RecordNotFoundError: If the organization has no email settings
            PersistenceError: If database error occurs
        """
        with self.lock_for(org_id):
            with self.session_scope() as session:
                return self._check(EmailSettingsRepository(session), org_id)

    def increment(self, org_id: str, count: int = 1) -> None:
        """Add ``count`` sends to both counters.

        Raises:
            ValueError: If count is negative
            RecordNotFoundError: If the organization has no email settings
        """
        with self.lock_for(org_id):
            with self.session_scope() as session:
                EmailSettingsRepository(session).increment_counts(org_id, count)

    def reserve(self, org_id: str) -> RateLimitStatus:
        """Atomically check capacity and, if available, count one send.

        Returns:
            The status after the reservation; ``can_send`` is False when
            nothing was reserved

        Raises:
            RecordNotFoundError: If the organization has no email settings
            PersistenceError: If database error occurs
        """
        with self.lock_for(org_id):
            with self.session_scope() as session:
                repo = EmailSettingsRepository(session)
                status = self._check(repo, org_id)
                if not status.can_send:
                    return status

                repo.increment_counts(org_id, 1)
                return RateLimitStatus(
                    can_send=True,
                    hourly_remaining=max(status.hourly_remaining - 1, 0),
                    daily_remaining=max(status.daily_remaining - 1, 0),
                )

    def _check(self, repo: EmailSettingsRepository, org_id: str) -> RateLimitStatus:
        settings = repo.get(org_id)
        if settings is None:
            raise RecordNotFoundError(f"Email settings for org {org_id} not found")

        state = settings.rate_limit_state()
        now = self.clock()
        hour_count = state.current_hour_count
        day_count = state.current_day_count
        reset = False

        if elapsed_hours(state.last_reset_hour, now) >= 1:
            repo.reset_hour_window(org_id, now)
            reset = True
            logger.debug("Hourly rate window reset", extra={"event": "rate_limit.reset.hour"})

        if elapsed_days(state.last_reset_day, now) >= 1:
            repo.reset_day_window(org_id, now)
            reset = True
            logger.debug("Daily rate window reset", extra={"event": "rate_limit.reset.day"})

        if reset:
            return RateLimitStatus(
                can_send=True,
                hourly_remaining=state.max_per_hour,
                daily_remaining=state.max_per_day,
            )

        return RateLimitStatus(
            can_send=hour_count < state.max_per_hour and day_count < state.max_per_day,
            hourly_remaining=max(state.max_per_hour - hour_count, 0),
            daily_remaining=max(state.max_per_day - day_count, 0),
        )
