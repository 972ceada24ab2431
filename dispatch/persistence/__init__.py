"""Persistence layer for settings, rules, templates, users and delivery logs.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - EmailSettingsRepository: settings, rate-limit windows and counters
    - RuleRepository: notification rules and execution statistics
    - TemplateRepository: templates and usage counters
    - UserRepository: active users by id or role
    - PreferenceRepository: per (user, organization) preferences
    - DeliveryLogRepository: delivery logs and status transitions

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - DatabaseConnectionError: Database connection/initialization failures
    - RecordNotFoundError: Required record not found
    - DataIntegrityError: Constraint violations
    - InvalidStatusTransitionError: Illegal delivery log state change

Example usage:
    >>> from dispatch.persistence import init_database, get_session, RuleRepository
    >>>
    >>> init_database("sqlite:///./data/notifications.db")
    >>>
    >>> with get_session() as session:
    ...     rules = RuleRepository(session).list_for_org("org-1")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    InvalidStatusTransitionError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    DeliveryLogRepository,
    EmailSettingsRepository,
    PreferenceRepository,
    RuleRepository,
    TemplateRepository,
    UserRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "EmailSettingsRepository",
    "RuleRepository",
    "TemplateRepository",
    "UserRepository",
    "PreferenceRepository",
    "DeliveryLogRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "InvalidStatusTransitionError",
]
