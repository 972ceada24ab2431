"""Preference filter deciding whether a recipient wants an event by email."""

from datetime import datetime
from typing import Optional

from dispatch.domain.models import (
    NotificationEvent,
    NotificationFrequency,
    UserNotificationPreferences,
)
from dispatch.utils.timestamps import ensure_utc, utc_now


def should_send(
    preferences: Optional[UserNotificationPreferences],
    event: NotificationEvent,
    now: Optional[datetime] = None,
) -> bool:
    """Check a recipient's preferences for one event.

    Absent preferences mean opt-in. Email disabled, or do-not-disturb with no
    end time or an end time still in the future, suppresses everything. A
    per-event entry must be enabled with a frequency other than ``never``;
    events without an entry are allowed.

    Args:
        preferences: Stored preferences, or None when the user has none
        event: Event being delivered
        now: Current time (defaults to UTC now)

    Returns:
        True if the email should be sent
    """
    if preferences is None:
        return True

    if not preferences.email_notifications_enabled:
        return False

    if preferences.do_not_disturb:
        until = preferences.do_not_disturb_until
        current = ensure_utc(now) or utc_now()
        if until is None or until > current:
            return False

    key = event.value if isinstance(event, NotificationEvent) else str(event)
    entry = preferences.preferences.get(key)
    if entry is None:
        return True

    return entry.enabled and entry.frequency != NotificationFrequency.NEVER
