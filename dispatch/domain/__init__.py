"""Domain models for the notification dispatch engine."""

from .models import (
    ALLOWED_TRANSITIONS,
    EXTERNAL_USER_ID,
    TERMINAL_STATUSES,
    Attachment,
    Condition,
    ConditionOperator,
    DeliveryError,
    DeliveryStatus,
    EmailDeliveryLog,
    EmailProvider,
    EmailSettings,
    EventPreference,
    NotificationEvent,
    NotificationFrequency,
    NotificationRule,
    NotificationTemplate,
    RateLimitState,
    RateLimitStatus,
    RecipientAddress,
    RecipientSpec,
    RecipientType,
    RenderedEmail,
    SmtpConfig,
    StatusHistoryEntry,
    User,
    UserNotificationPreferences,
    new_id,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "EXTERNAL_USER_ID",
    "TERMINAL_STATUSES",
    "Attachment",
    "Condition",
    "ConditionOperator",
    "DeliveryError",
    "DeliveryStatus",
    "EmailDeliveryLog",
    "EmailProvider",
    "EmailSettings",
    "EventPreference",
    "NotificationEvent",
    "NotificationFrequency",
    "NotificationRule",
    "NotificationTemplate",
    "RateLimitState",
    "RateLimitStatus",
    "RecipientAddress",
    "RecipientSpec",
    "RecipientType",
    "RenderedEmail",
    "SmtpConfig",
    "StatusHistoryEntry",
    "User",
    "UserNotificationPreferences",
    "new_id",
]
