"""Tests for the preference filter."""

from datetime import timedelta

from dispatch.domain.models import (
    EventPreference,
    NotificationEvent,
    NotificationFrequency,
    UserNotificationPreferences,
)
from dispatch.notifications.preferences import should_send
from tests.helpers.builders import BASE_TIME

EVENT = NotificationEvent.TICKET_ASSIGNED


def _prefs(**overrides):
    return UserNotificationPreferences(user_id="alice", org_id="org-1", **overrides)


class TestShouldSend:
    """Tests for should_send."""

    def test_absent_preferences_mean_opt_in(self):
        """Test a user without stored preferences receives email."""
        assert should_send(None, EVENT, now=BASE_TIME) is True

    def test_defaults_allow(self):
        """Test default preferences allow every event."""
        assert should_send(_prefs(), EVENT, now=BASE_TIME) is True

    def test_email_disabled_blocks_everything(self):
        """Test the global email switch suppresses all events."""
        assert should_send(_prefs(email_notifications_enabled=False), EVENT, now=BASE_TIME) is False

    def test_do_not_disturb_without_end(self):
        """Test do-not-disturb with no end time suppresses."""
        assert should_send(_prefs(do_not_disturb=True), EVENT, now=BASE_TIME) is False

    def test_do_not_disturb_in_future(self):
        """Test do-not-disturb ending later suppresses."""
        prefs = _prefs(do_not_disturb=True, do_not_disturb_until=BASE_TIME + timedelta(hours=1))
        assert should_send(prefs, EVENT, now=BASE_TIME) is False

    def test_do_not_disturb_expired(self):
        """Test an expired do-not-disturb window no longer suppresses."""
        prefs = _prefs(do_not_disturb=True, do_not_disturb_until=BASE_TIME - timedelta(minutes=1))
        assert should_send(prefs, EVENT, now=BASE_TIME) is True

    def test_do_not_disturb_until_without_flag_is_ignored(self):
        """Test an end time alone does not suppress."""
        prefs = _prefs(do_not_disturb_until=BASE_TIME + timedelta(hours=1))
        assert should_send(prefs, EVENT, now=BASE_TIME) is True

    def test_event_disabled(self):
        """Test a disabled per-event entry suppresses that event only."""
        prefs = _prefs(preferences={EVENT.value: EventPreference(enabled=False)})
        assert should_send(prefs, EVENT, now=BASE_TIME) is False
        assert should_send(prefs, NotificationEvent.TICKET_CREATED, now=BASE_TIME) is True

    def test_event_frequency_never(self):
        """Test frequency never suppresses even when enabled."""
        prefs = _prefs(
            preferences={EVENT.value: EventPreference(enabled=True, frequency=NotificationFrequency.NEVER)}
        )
        assert should_send(prefs, EVENT, now=BASE_TIME) is False

    def test_event_frequency_digest_still_sends(self):
        """Test digest frequency is treated as send."""
        prefs = _prefs(
            preferences={EVENT.value: EventPreference(frequency=NotificationFrequency.DIGEST)}
        )
        assert should_send(prefs, EVENT, now=BASE_TIME) is True
