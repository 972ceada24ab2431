"""Unit tests for the notification engine.

Tests NotificationEngine for:
- Settings and rule short-circuits
- The queued -> sending -> sent | failed state machine
- Per-recipient failure isolation
- Rate-limit hard stop and preference suppression
- Render-once-per-rule and rule statistics
- The never-raising trigger boundary
"""

from unittest.mock import Mock, patch

import pytest

from dispatch.domain.models import (
    DeliveryStatus,
    NotificationEvent,
    RenderedEmail,
    UserNotificationPreferences,
)
from dispatch.notifications.models import TemplateRenderError
from dispatch.notifications.service import UNKNOWN_ERROR_CODE, NotificationEngine
from dispatch.persistence import (
    DeliveryLogRepository,
    EmailSettingsRepository,
    InvalidStatusTransitionError,
    PersistenceError,
    PreferenceRepository,
    RuleRepository,
    TemplateRepository,
    get_session,
)
from dispatch.providers.exceptions import (
    ProviderConfigurationError,
    ProviderRejected,
    ProviderTimeout,
)
from tests.helpers import (
    FakeClock,
    StubProvider,
    save_rule,
    save_settings,
    save_template,
    save_user,
)

PAYLOAD = {"ticket": {"number": 42, "title": "VPN down"}, "assignedTo": "alice"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def engine(db, provider, clock):
    return NotificationEngine(provider_factory=lambda settings: provider, clock=clock)


@pytest.fixture
def template(db):
    return save_template()


def _logs(org_id="org-1"):
    with get_session() as session:
        return DeliveryLogRepository(session).list_for_org(org_id, limit=500)


def _rule_stats(rule_id):
    with get_session() as session:
        return RuleRepository(session).get(rule_id)


def _counts(org_id="org-1"):
    with get_session() as session:
        settings = EmailSettingsRepository(session).get(org_id)
    return settings.current_hour_count, settings.current_day_count


class TestTriggerShortCircuits:
    """Tests for the no-op paths."""

    def test_no_settings(self, engine, template, provider):
        """Test an organization without settings sends nothing."""
        save_rule(template.id)

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert results == []
        assert _logs() == []
        assert provider.attempts == 0

    @pytest.mark.parametrize("overrides", [{"is_enabled": False}, {"is_configured": False}])
    def test_inactive_settings(self, engine, template, provider, overrides):
        """Test disabled or unconfigured settings send nothing."""
        save_settings(**overrides)
        save_rule(template.id)

        assert engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD) == []
        assert provider.attempts == 0

    def test_no_matching_rules(self, engine, template, provider):
        """Test a non-matching event sends nothing."""
        save_settings()
        save_rule(template.id, conditions=[{"field": "ticket.priority", "operator": "equals", "value": "critical"}])

        assert engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD) == []
        assert _logs() == []

    def test_no_recipients_skips_statistics(self, engine, template):
        """Test a rule without recipients neither sends nor counts an execution."""
        save_settings()
        rule = save_rule(template.id, recipients=[{"type": "assignee"}])

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, {})

        assert results[0].recipients == 0
        assert _rule_stats(rule.id).execution_count == 0


class TestSuccessfulDelivery:
    """Tests for the happy path."""

    def test_single_delivery(self, engine, template, provider, clock):
        """Test one recipient produces one sent log with full history."""
        save_settings()
        rule = save_rule(template.id)

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert len(results) == 1
        assert results[0].sent == 1
        logs = _logs()
        assert len(logs) == 1
        log = logs[0]
        assert log.status == DeliveryStatus.SENT
        assert [entry.status for entry in log.status_history] == [
            DeliveryStatus.QUEUED,
            DeliveryStatus.SENDING,
            DeliveryStatus.SENT,
        ]
        assert log.to == ["ops@example.com"]
        assert log.subject == "New ticket #42: VPN down"
        assert log.from_address == "Acme Support <noreply@example.com>"
        assert log.provider_message_id == "<stub-1@example.com>"
        assert log.recipient_user_id == "external"
        assert log.rule_id == rule.id
        assert log.template_id == template.id
        assert log.sent_at == clock.now
        assert log.max_retries == 3

    def test_rule_statistics_updated_once(self, engine, template, clock):
        """Test execution and success counts grow by one per processed rule."""
        save_settings()
        save_user("alice")
        save_user("bob")
        rule = save_rule(
            template.id,
            recipients=[{"type": "user", "value": ["alice", "bob"]}, {"type": "email", "value": "ops@example.com"}],
        )

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        stats = _rule_stats(rule.id)
        assert stats.execution_count == 1
        assert stats.success_count == 1
        assert stats.failure_count == 0
        assert stats.last_executed_at == clock.now

    def test_template_rendered_once_per_rule(self, engine, template, provider):
        """Test several recipients share a single render."""
        save_settings()
        save_user("alice")
        save_user("bob")
        save_rule(template.id, recipients=[{"type": "user", "value": ["alice", "bob"]}])

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert sorted(provider.recipients) == ["alice@example.com", "bob@example.com"]
        with get_session() as session:
            assert TemplateRepository(session).get(template.id).usage_count == 1

    def test_rate_counters_incremented_per_send(self, engine, template):
        """Test each dispatch attempt counts against the rate limit."""
        save_settings()
        save_user("alice")
        save_rule(template.id, recipients=[{"type": "user", "value": "alice"}, {"type": "email", "value": "ops@example.com"}])

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert _counts() == (2, 2)

    def test_rules_processed_in_priority_order(self, engine, provider):
        """Test lower priority values are delivered first."""
        save_settings()
        late = save_template(subject="late")
        early = save_template(subject="early")
        save_rule(late.id, priority=50)
        save_rule(early.id, priority=5)

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert [message["subject"] for message in provider.sent] == ["early", "late"]

    def test_related_entity_recorded(self, engine, template):
        """Test the payload's relatedEntity is stored on the log."""
        save_settings()
        save_rule(template.id)

        engine.process_trigger(
            "org-1",
            NotificationEvent.TICKET_CREATED,
            {**PAYLOAD, "relatedEntity": {"type": "ticket", "id": "T-42"}},
        )

        assert _logs()[0].related_entity == {"type": "ticket", "id": "T-42"}


class TestFailureIsolation:
    """Tests for per-recipient and per-rule failure handling."""

    def test_provider_failure_recorded_and_loop_continues(self, db, template, clock):
        """Test one failed recipient does not stop the others."""
        provider = StubProvider(fail_for={"bob@example.com": ProviderRejected("Email rejected")})
        engine = NotificationEngine(provider_factory=lambda s: provider, clock=clock)
        save_settings()
        for user_id in ("alice", "bob", "carol"):
            save_user(user_id)
        rule = save_rule(template.id, recipients=[{"type": "user", "value": ["alice", "bob", "carol"]}])

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert results[0].sent == 2
        assert results[0].failed == 1
        failed = [log for log in _logs() if log.status == DeliveryStatus.FAILED]
        assert len(failed) == 1
        assert failed[0].to == ["bob@example.com"]
        assert failed[0].error.code == "MESSAGE_REJECTED"
        assert failed[0].error.message == "Email rejected"
        assert failed[0].failed_at == clock.now
        assert [entry.status for entry in failed[0].status_history] == [
            DeliveryStatus.QUEUED,
            DeliveryStatus.SENDING,
            DeliveryStatus.FAILED,
        ]
        assert _counts() == (3, 3)
        assert _rule_stats(rule.id).success_count == 1

    def test_timeout_recorded_with_code(self, db, template, clock):
        """Test a provider timeout leaves a failed log with TIMEOUT."""
        provider = StubProvider(fail_for={"ops@example.com": ProviderTimeout("timed out")})
        engine = NotificationEngine(provider_factory=lambda s: provider, clock=clock)
        save_settings()
        save_rule(template.id)

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert _logs()[0].error.code == "TIMEOUT"

    def test_unexpected_error_recorded_as_unknown(self, db, template, clock):
        """Test a non-provider exception still terminates the log as failed."""
        provider = Mock()
        provider.send.side_effect = RuntimeError("socket exploded")
        engine = NotificationEngine(provider_factory=lambda s: provider, clock=clock)
        save_settings()
        save_rule(template.id)

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert results[0].failed == 1
        log = _logs()[0]
        assert log.status == DeliveryStatus.FAILED
        assert log.error.code == UNKNOWN_ERROR_CODE

    def test_unbuildable_provider_fails_each_delivery(self, db, template, clock):
        """Test a provider that cannot be built is recorded on every log."""
        factory = Mock(side_effect=ProviderConfigurationError("Invalid email provider configuration"))
        engine = NotificationEngine(provider_factory=factory, clock=clock)
        save_settings()
        save_rule(template.id)

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        log = _logs()[0]
        assert log.status == DeliveryStatus.FAILED
        assert log.error.code == "INVALID_CONFIGURATION"

    def test_missing_template_aborts_only_that_rule(self, engine, template, provider):
        """Test a render failure skips its rule while later rules still run."""
        save_settings()
        broken = save_rule("missing-template", priority=1)
        save_rule(template.id, priority=2)

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert len(results) == 1
        assert provider.attempts == 1
        assert _rule_stats(broken.id).execution_count == 0

    def test_process_rule_propagates_render_error(self, engine):
        """Test the per-rule step surfaces TemplateRenderError to its caller."""
        settings = save_settings()
        rule = save_rule("missing-template")

        with pytest.raises(TemplateRenderError):
            engine.process_rule("org-1", rule, PAYLOAD, settings)

    def test_trigger_notification_never_raises(self, provider, clock):
        """Test the top-level entry point swallows even database failures."""
        engine = NotificationEngine(provider_factory=lambda s: provider, clock=clock)

        engine.trigger_notification("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert provider.attempts == 0

    def test_trigger_notification_accepts_event_string(self, engine, template, provider):
        """Test the dotted event name is accepted by the entry point."""
        save_settings()
        save_rule(template.id)

        engine.trigger_notification("org-1", "ticket.created", PAYLOAD)

        assert provider.attempts == 1

    def test_unknown_event_string_is_swallowed(self, engine, provider):
        """Test an invalid event name is logged, not raised."""
        engine.trigger_notification("org-1", "ticket.exploded", PAYLOAD)
        assert provider.attempts == 0


class TestRateLimitAndPreferences:
    """Tests for the rate-limit hard stop and preference filtering."""

    def test_rate_limit_stops_remaining_recipients(self, engine, template, provider):
        """Test an exhausted limit stops the rule without failing it."""
        save_settings(max_emails_per_hour=2)
        for user_id in ("alice", "bob", "carol"):
            save_user(user_id)
        rule = save_rule(template.id, recipients=[{"type": "user", "value": ["alice", "bob", "carol"]}])

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert results[0].sent == 2
        assert results[0].rate_limited is True
        assert provider.attempts == 2
        assert len(_logs()) == 2
        assert _rule_stats(rule.id).execution_count == 1

    def test_rate_limit_applies_across_rules(self, engine, provider):
        """Test the hourly cap is shared by every rule of the organization."""
        save_settings(max_emails_per_hour=1)
        first = save_template(subject="first")
        second = save_template(subject="second")
        save_rule(first.id, priority=1)
        save_rule(second.id, priority=2)

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert [r.sent for r in results] == [1, 0]
        assert results[1].rate_limited is True

    def test_preference_suppression(self, engine, template, provider):
        """Test opted-out users are skipped silently and not counted."""
        save_settings()
        save_user("alice")
        save_user("bob")
        with get_session() as session:
            PreferenceRepository(session).save(
                UserNotificationPreferences(user_id="bob", org_id="org-1", email_notifications_enabled=False)
            )
        save_rule(template.id, recipients=[{"type": "user", "value": ["alice", "bob"]}])

        results = engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD)

        assert results[0].suppressed == 1
        assert provider.recipients == ["alice@example.com"]
        assert _counts() == (1, 1)

    def test_triggering_user_not_notified(self, engine, template, provider):
        """Test the acting user is excluded end to end."""
        save_settings()
        save_user("alice")
        save_rule(template.id, recipients=[{"type": "assignee"}])

        engine.process_trigger("org-1", NotificationEvent.TICKET_CREATED, PAYLOAD, triggered_by="alice")

        assert provider.attempts == 0


class TestStateMachine:
    """Tests for queue_delivery and deliver."""

    def _rendered(self):
        return RenderedEmail(subject="Hello", html_body="<p>Hi</p>")

    def test_terminal_log_cannot_be_redelivered(self, engine):
        """Test a sent log never leaves its terminal state."""
        settings = save_settings()
        log = engine.queue_delivery("org-1", settings, "ops@example.com", self._rendered(), NotificationEvent.TICKET_CREATED)
        engine.deliver(log, settings)

        with pytest.raises(InvalidStatusTransitionError):
            engine.deliver(log, settings)

        with get_session() as session:
            stored = DeliveryLogRepository(session).get(log.id)
        assert stored.status == DeliveryStatus.SENT
        assert len(stored.status_history) == 3

    def test_send_email_re_raises_after_marking_failed(self, db, clock):
        """Test send_email records the failure and re-raises it."""
        provider = StubProvider(fail_for={"ops@example.com": ProviderRejected("nope")})
        engine = NotificationEngine(provider_factory=lambda s: provider, clock=clock)
        settings = save_settings()

        with pytest.raises(ProviderRejected):
            engine.send_email("org-1", settings, "ops@example.com", self._rendered(), NotificationEvent.TICKET_CREATED)

        assert _logs()[0].status == DeliveryStatus.FAILED

    def test_provider_error_survives_failure_recording_error(self, db, clock):
        """Test the provider error still propagates when marking the log failed breaks."""
        provider = StubProvider(fail_for={"ops@example.com": ProviderRejected("nope")})
        engine = NotificationEngine(provider_factory=lambda s: provider, clock=clock)
        settings = save_settings()
        log = engine.queue_delivery("org-1", settings, "ops@example.com", self._rendered(), NotificationEvent.TICKET_CREATED)

        with patch.object(engine, "_mark_failed", side_effect=PersistenceError("database is locked")):
            with pytest.raises(ProviderRejected):
                engine.deliver(log, settings)

        assert _logs()[0].status == DeliveryStatus.SENDING

    def test_queue_delivery_copies_reply_to(self, engine):
        """Test the organization's reply-to address is stamped on the log."""
        settings = save_settings(reply_to_email="support@example.com")

        log = engine.queue_delivery("org-1", settings, ["a@example.com", "b@example.com"], self._rendered(), NotificationEvent.TICKET_CREATED)

        assert log.status == DeliveryStatus.QUEUED
        assert log.to == ["a@example.com", "b@example.com"]
        assert log.reply_to == "support@example.com"
