"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers at the
trigger boundary can catch storage failures with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL
    - Database file not accessible
    - Database used before init_database() was called
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation requires a record that does not exist.

    Plain lookups return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a write would violate a constraint.

    Examples:
    - Duplicate primary key or unique (user, organization) pair
    - Second settings row for the same organization
    """

    pass


class InvalidStatusTransitionError(DataIntegrityError):
    """Raised when a delivery log update would leave the queued/sending/sent|failed path."""

    def __init__(self, log_id: str, current: str, requested: str):
        self.log_id = log_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Delivery log {log_id} cannot move from '{current}' to '{requested}'"
        )
