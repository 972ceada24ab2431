"""Builders for domain records used across tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from dispatch.domain.models import (
    EmailSettings,
    NotificationEvent,
    NotificationRule,
    NotificationTemplate,
    User,
)
from dispatch.persistence import (
    EmailSettingsRepository,
    RuleRepository,
    TemplateRepository,
    UserRepository,
    get_session,
)

BASE_TIME = datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_settings(org_id: str = "org-1", **overrides) -> EmailSettings:
    values = {
        "org_id": org_id,
        "from_email": "noreply@example.com",
        "from_name": "Acme Support",
        "is_enabled": True,
        "is_configured": True,
        "max_emails_per_hour": 100,
        "max_emails_per_day": 1000,
        "last_reset_hour": BASE_TIME,
        "last_reset_day": BASE_TIME,
    }
    values.update(overrides)
    return EmailSettings(**values)


def make_template(org_id: str = "org-1", **overrides) -> NotificationTemplate:
    values = {
        "org_id": org_id,
        "name": "Ticket Created",
        "subject": "New ticket #{{ ticket.number }}: {{ ticket.title }}",
        "html_body": "<p>Hello {{ recipient.name }}, ticket {{ ticket.title }} was created.</p>",
        "text_body": "Ticket {{ ticket.title }} was created.",
        "event": NotificationEvent.TICKET_CREATED,
    }
    values.update(overrides)
    return NotificationTemplate(**values)


def make_rule(template_id: str, org_id: str = "org-1", **overrides) -> NotificationRule:
    values = {
        "org_id": org_id,
        "name": "Notify on new ticket",
        "event": NotificationEvent.TICKET_CREATED,
        "template_id": template_id,
        "recipients": [{"type": "email", "value": "ops@example.com"}],
    }
    values.update(overrides)
    return NotificationRule(**values)


def make_user(user_id: str, org_id: str = "org-1", role_id: Optional[str] = None, **overrides) -> User:
    values = {
        "id": user_id,
        "org_id": org_id,
        "email": f"{user_id}@example.com",
        "name": user_id.title(),
        "role_id": role_id,
    }
    values.update(overrides)
    return User(**values)


def save_settings(org_id: str = "org-1", **overrides) -> EmailSettings:
    with get_session() as session:
        return EmailSettingsRepository(session).upsert(make_settings(org_id, **overrides))


def save_template(org_id: str = "org-1", **overrides) -> NotificationTemplate:
    with get_session() as session:
        return TemplateRepository(session).save(make_template(org_id, **overrides))


def save_rule(template_id: str, org_id: str = "org-1", **overrides) -> NotificationRule:
    with get_session() as session:
        return RuleRepository(session).save(make_rule(template_id, org_id, **overrides))


def save_user(user_id: str, org_id: str = "org-1", role_id: Optional[str] = None, **overrides) -> User:
    with get_session() as session:
        return UserRepository(session).save(make_user(user_id, org_id, role_id, **overrides))
