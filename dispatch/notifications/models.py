"""Result types and exceptions for the notification engine.

This module defines the error kinds raised inside the orchestration path and
the per-rule outcome the engine reports back to its callers and tests.
"""

from dataclasses import dataclass, field
from typing import List, Optional


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class TemplateRenderError(NotificationError):
    """Raised when a template cannot be rendered (missing, inactive, or broken)."""

    pass


class TemplateValidationError(NotificationError):
    """Raised when a template body fails to compile before save.

    Attributes:
        errors: Per-field messages prefixed with the field label
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)

    def __str__(self) -> str:
        if not self.errors:
            return super().__str__()
        return f"{super().__str__()}: {'; '.join(self.errors)}"


class RateLimitExceeded(NotificationError):
    """Raised when an organization has no remaining send capacity."""

    pass


class SettingsNotConfigured(NotificationError):
    """Raised when an organization has no usable email settings."""

    pass


class RetryNotAllowed(NotificationError):
    """Raised when a delivery log is not failed, out of budget, or already retried."""

    pass


@dataclass
class RuleResult:
    """Outcome of processing one rule for one triggering event.

    Attributes:
        rule_id: Rule that was processed
        recipients: Number of resolved recipients
        sent: Deliveries that reached ``sent``
        failed: Deliveries that ended ``failed``
        suppressed: Recipients skipped by their preferences
        rate_limited: True when the rule stopped early on the rate limit
        log_ids: Delivery log ids created for this rule, in send order
    """

    rule_id: str
    recipients: int = 0
    sent: int = 0
    failed: int = 0
    suppressed: int = 0
    rate_limited: bool = False
    log_ids: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed
