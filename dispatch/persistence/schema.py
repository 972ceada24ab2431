"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the database schema and provides
conversion methods between ORM models and domain models. Timestamps are stored
as ISO 8601 UTC strings; list and dict fields are JSON columns.
"""

import logging

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from dispatch.domain.models import (
    Condition,
    DeliveryError,
    EmailDeliveryLog,
    EmailSettings,
    EventPreference,
    NotificationRule,
    NotificationTemplate,
    RecipientSpec,
    SmtpConfig,
    StatusHistoryEntry,
    User,
    UserNotificationPreferences,
)
from dispatch.utils.timestamps import format_timestamp, parse_iso_datetime

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


class EmailSettingsModel(Base):
    """ORM model for email_settings table.

    One row per organization; also carries the rate-limit window state.
    """

    __tablename__ = "email_settings"

    id = Column(String(64), primary_key=True, nullable=False)
    org_id = Column(String(64), nullable=False, unique=True)

    provider = Column(String(20), nullable=False)

    # Relay connection (password is Fernet ciphertext)
    smtp_host = Column(String(255), nullable=True)
    smtp_port = Column(Integer, nullable=True)
    smtp_secure = Column(Boolean, nullable=False, default=False)
    smtp_username = Column(String(255), nullable=True)
    smtp_password = Column(Text, nullable=True)
    smtp_require_tls = Column(Boolean, nullable=False, default=True)

    # Sender identity
    from_email = Column(String(320), nullable=False)
    from_name = Column(String(255), nullable=False, default="")
    reply_to_email = Column(String(320), nullable=True)

    is_enabled = Column(Boolean, nullable=False, default=False)
    is_configured = Column(Boolean, nullable=False, default=False)

    # Rate limit state
    max_emails_per_hour = Column(Integer, nullable=False, default=100)
    max_emails_per_day = Column(Integer, nullable=False, default=1000)
    current_hour_count = Column(Integer, nullable=False, default=0)
    current_day_count = Column(Integer, nullable=False, default=0)
    last_reset_hour = Column(String(50), nullable=False)
    last_reset_day = Column(String(50), nullable=False)

    last_tested_at = Column(String(50), nullable=True)
    last_test_result = Column(JSON, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    def to_domain(self) -> EmailSettings:
        smtp = None
        if self.smtp_host:
            smtp = SmtpConfig(
                host=self.smtp_host,
                port=self.smtp_port or 587,
                secure=bool(self.smtp_secure),
                username=self.smtp_username,
                password=self.smtp_password,
                require_tls=bool(self.smtp_require_tls),
            )

        return EmailSettings(
            id=self.id,
            org_id=self.org_id,
            provider=self.provider,
            smtp=smtp,
            from_email=self.from_email,
            from_name=self.from_name or "",
            reply_to_email=self.reply_to_email,
            is_enabled=bool(self.is_enabled),
            is_configured=bool(self.is_configured),
            max_emails_per_hour=self.max_emails_per_hour,
            max_emails_per_day=self.max_emails_per_day,
            current_hour_count=self.current_hour_count,
            current_day_count=self.current_day_count,
            last_reset_hour=parse_iso_datetime(self.last_reset_hour),
            last_reset_day=parse_iso_datetime(self.last_reset_day),
            last_tested_at=parse_iso_datetime(self.last_tested_at),
            last_test_result=self.last_test_result,
            created_by=self.created_by,
            created_at=parse_iso_datetime(self.created_at),
            updated_at=parse_iso_datetime(self.updated_at),
        )

    def apply(self, settings: EmailSettings) -> None:
        """Copy every field from a domain model onto this row."""
        smtp = settings.smtp
        self.org_id = settings.org_id
        self.provider = _enum_value(settings.provider)
        self.smtp_host = smtp.host if smtp else None
        self.smtp_port = smtp.port if smtp else None
        self.smtp_secure = smtp.secure if smtp else False
        self.smtp_username = smtp.username if smtp else None
        self.smtp_password = smtp.password if smtp else None
        self.smtp_require_tls = smtp.require_tls if smtp else True
        self.from_email = settings.from_email
        self.from_name = settings.from_name
        self.reply_to_email = settings.reply_to_email
        self.is_enabled = settings.is_enabled
        self.is_configured = settings.is_configured
        self.max_emails_per_hour = settings.max_emails_per_hour
        self.max_emails_per_day = settings.max_emails_per_day
        self.current_hour_count = settings.current_hour_count
        self.current_day_count = settings.current_day_count
        self.last_reset_hour = format_timestamp(settings.last_reset_hour)
        self.last_reset_day = format_timestamp(settings.last_reset_day)
        self.last_tested_at = format_timestamp(settings.last_tested_at)
        self.last_test_result = settings.last_test_result
        self.created_by = settings.created_by
        self.created_at = format_timestamp(settings.created_at)
        self.updated_at = format_timestamp(settings.updated_at)

    @classmethod
    def from_domain(cls, settings: EmailSettings) -> "EmailSettingsModel":
        model = cls(id=settings.id)
        model.apply(settings)
        return model


class NotificationRuleModel(Base):
    """ORM model for notification_rules table."""

    __tablename__ = "notification_rules"

    id = Column(String(64), primary_key=True, nullable=False)
    org_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    event = Column(String(64), nullable=False)
    conditions = Column(JSON, nullable=False, default=list)
    recipients = Column(JSON, nullable=False, default=list)
    template_id = Column(String(64), nullable=False)
    priority = Column(Integer, nullable=False, default=100)
    is_enabled = Column(Boolean, nullable=False, default=True)
    execution_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_rules_org_event", "org_id", "event", "is_enabled"),
    )

    def to_domain(self) -> NotificationRule:
        return NotificationRule(
            id=self.id,
            org_id=self.org_id,
            name=self.name or "",
            description=self.description or "",
            event=self.event,
            conditions=[Condition.model_validate(c) for c in (self.conditions or [])],
            recipients=[RecipientSpec.model_validate(r) for r in (self.recipients or [])],
            template_id=self.template_id,
            priority=self.priority,
            is_enabled=bool(self.is_enabled),
            execution_count=self.execution_count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            last_executed_at=parse_iso_datetime(self.last_executed_at),
            created_at=parse_iso_datetime(self.created_at),
            updated_at=parse_iso_datetime(self.updated_at),
        )

    def apply(self, rule: NotificationRule) -> None:
        self.org_id = rule.org_id
        self.name = rule.name
        self.description = rule.description
        self.event = _enum_value(rule.event)
        self.conditions = [c.model_dump(mode="json") for c in rule.conditions]
        self.recipients = [r.model_dump(mode="json") for r in rule.recipients]
        self.template_id = rule.template_id
        self.priority = rule.priority
        self.is_enabled = rule.is_enabled
        self.execution_count = rule.execution_count
        self.success_count = rule.success_count
        self.failure_count = rule.failure_count
        self.last_executed_at = format_timestamp(rule.last_executed_at)
        self.created_at = format_timestamp(rule.created_at)
        self.updated_at = format_timestamp(rule.updated_at)

    @classmethod
    def from_domain(cls, rule: NotificationRule) -> "NotificationRuleModel":
        model = cls(id=rule.id)
        model.apply(rule)
        return model


class NotificationTemplateModel(Base):
    """ORM model for notification_templates table."""

    __tablename__ = "notification_templates"

    id = Column(String(64), primary_key=True, nullable=False)
    org_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    subject = Column(Text, nullable=False)
    html_body = Column(Text, nullable=False)
    text_body = Column(Text, nullable=True)
    available_variables = Column(JSON, nullable=False, default=list)
    event = Column(String(64), nullable=False)
    is_system = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(String(50), nullable=True)
    preview_data = Column(JSON, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_templates_org_event", "org_id", "event"),)

    def to_domain(self) -> NotificationTemplate:
        return NotificationTemplate(
            id=self.id,
            org_id=self.org_id,
            name=self.name,
            description=self.description or "",
            subject=self.subject,
            html_body=self.html_body,
            text_body=self.text_body,
            available_variables=list(self.available_variables or []),
            event=self.event,
            is_system=bool(self.is_system),
            is_active=bool(self.is_active),
            usage_count=self.usage_count,
            last_used_at=parse_iso_datetime(self.last_used_at),
            preview_data=self.preview_data,
            created_by=self.created_by,
            created_at=parse_iso_datetime(self.created_at),
            updated_at=parse_iso_datetime(self.updated_at),
        )

    def apply(self, template: NotificationTemplate) -> None:
        self.org_id = template.org_id
        self.name = template.name
        self.description = template.description
        self.subject = template.subject
        self.html_body = template.html_body
        self.text_body = template.text_body
        self.available_variables = list(template.available_variables)
        self.event = _enum_value(template.event)
        self.is_system = template.is_system
        self.is_active = template.is_active
        self.usage_count = template.usage_count
        self.last_used_at = format_timestamp(template.last_used_at)
        self.preview_data = template.preview_data
        self.created_by = template.created_by
        self.created_at = format_timestamp(template.created_at)
        self.updated_at = format_timestamp(template.updated_at)

    @classmethod
    def from_domain(cls, template: NotificationTemplate) -> "NotificationTemplateModel":
        model = cls(id=template.id)
        model.apply(template)
        return model


class UserModel(Base):
    """ORM model for users table."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True, nullable=False)
    org_id = Column(String(64), nullable=False)
    email = Column(String(320), nullable=False)
    name = Column(String(255), nullable=False, default="")
    role_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_users_org_role", "org_id", "role_id"),
    )

    def to_domain(self) -> User:
        return User(
            id=self.id,
            org_id=self.org_id,
            email=self.email,
            name=self.name or "",
            role_id=self.role_id,
            is_active=bool(self.is_active),
        )

    @classmethod
    def from_domain(cls, user: User) -> "UserModel":
        return cls(
            id=user.id,
            org_id=user.org_id,
            email=user.email,
            name=user.name,
            role_id=user.role_id,
            is_active=user.is_active,
        )


class UserPreferencesModel(Base):
    """ORM model for user_notification_preferences table."""

    __tablename__ = "user_notification_preferences"

    # Composite primary key
    user_id = Column(String(64), primary_key=True, nullable=False)
    org_id = Column(String(64), primary_key=True, nullable=False)

    email_notifications_enabled = Column(Boolean, nullable=False, default=True)
    digest_mode = Column(Boolean, nullable=False, default=False)
    do_not_disturb = Column(Boolean, nullable=False, default=False)
    do_not_disturb_until = Column(String(50), nullable=True)
    preferences = Column(JSON, nullable=False, default=dict)

    def to_domain(self) -> UserNotificationPreferences:
        return UserNotificationPreferences(
            user_id=self.user_id,
            org_id=self.org_id,
            email_notifications_enabled=bool(self.email_notifications_enabled),
            digest_mode=bool(self.digest_mode),
            do_not_disturb=bool(self.do_not_disturb),
            do_not_disturb_until=parse_iso_datetime(self.do_not_disturb_until),
            preferences={
                key: EventPreference.model_validate(value)
                for key, value in (self.preferences or {}).items()
            },
        )

    def apply(self, prefs: UserNotificationPreferences) -> None:
        self.email_notifications_enabled = prefs.email_notifications_enabled
        self.digest_mode = prefs.digest_mode
        self.do_not_disturb = prefs.do_not_disturb
        self.do_not_disturb_until = format_timestamp(prefs.do_not_disturb_until)
        self.preferences = {
            key: value.model_dump(mode="json") for key, value in prefs.preferences.items()
        }

    @classmethod
    def from_domain(cls, prefs: UserNotificationPreferences) -> "UserPreferencesModel":
        model = cls(user_id=prefs.user_id, org_id=prefs.org_id)
        model.apply(prefs)
        return model


class DeliveryLogModel(Base):
    """ORM model for email_delivery_logs table.

    One row per attempted send to one recipient.
    """

    __tablename__ = "email_delivery_logs"

    id = Column(String(64), primary_key=True, nullable=False)
    org_id = Column(String(64), nullable=False)

    to_addresses = Column(JSON, nullable=False)
    cc_addresses = Column(JSON, nullable=False, default=list)
    bcc_addresses = Column(JSON, nullable=False, default=list)
    from_address = Column(String(640), nullable=False)
    reply_to = Column(String(320), nullable=True)

    subject = Column(Text, nullable=False)
    html_body = Column(Text, nullable=False)
    text_body = Column(Text, nullable=True)

    event = Column(String(64), nullable=False)
    rule_id = Column(String(64), nullable=True)
    template_id = Column(String(64), nullable=True)
    recipient_user_id = Column(String(64), nullable=True)
    related_entity = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False)
    status_history = Column(JSON, nullable=False, default=list)
    provider_message_id = Column(String(255), nullable=True)
    provider_response = Column(JSON, nullable=True)
    error = Column(JSON, nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    parent_log_id = Column(String(64), nullable=True)

    queued_at = Column(String(50), nullable=False)
    sent_at = Column(String(50), nullable=True)
    failed_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_delivery_logs_org_queued", "org_id", "queued_at"),
        Index("idx_delivery_logs_status", "status"),
        Index("idx_delivery_logs_rule", "rule_id"),
    )

    def to_domain(self) -> EmailDeliveryLog:
        return EmailDeliveryLog(
            id=self.id,
            org_id=self.org_id,
            to=list(self.to_addresses or []),
            cc=list(self.cc_addresses or []),
            bcc=list(self.bcc_addresses or []),
            from_address=self.from_address,
            reply_to=self.reply_to,
            subject=self.subject,
            html_body=self.html_body,
            text_body=self.text_body,
            event=self.event,
            rule_id=self.rule_id,
            template_id=self.template_id,
            recipient_user_id=self.recipient_user_id,
            related_entity=self.related_entity,
            status=self.status,
            status_history=[
                StatusHistoryEntry.model_validate(entry)
                for entry in (self.status_history or [])
            ],
            provider_message_id=self.provider_message_id,
            provider_response=self.provider_response,
            error=DeliveryError.model_validate(self.error) if self.error else None,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            parent_log_id=self.parent_log_id,
            queued_at=parse_iso_datetime(self.queued_at),
            sent_at=parse_iso_datetime(self.sent_at),
            failed_at=parse_iso_datetime(self.failed_at),
        )

    @classmethod
    def from_domain(cls, log: EmailDeliveryLog) -> "DeliveryLogModel":
        return cls(
            id=log.id,
            org_id=log.org_id,
            to_addresses=list(log.to),
            cc_addresses=list(log.cc),
            bcc_addresses=list(log.bcc),
            from_address=log.from_address,
            reply_to=log.reply_to,
            subject=log.subject,
            html_body=log.html_body,
            text_body=log.text_body,
            event=_enum_value(log.event),
            rule_id=log.rule_id,
            template_id=log.template_id,
            recipient_user_id=log.recipient_user_id,
            related_entity=log.related_entity,
            status=_enum_value(log.status),
            status_history=[entry.model_dump(mode="json") for entry in log.status_history],
            provider_message_id=log.provider_message_id,
            provider_response=log.provider_response,
            error=log.error.model_dump(mode="json") if log.error else None,
            retry_count=log.retry_count,
            max_retries=log.max_retries,
            parent_log_id=log.parent_log_id,
            queued_at=format_timestamp(log.queued_at),
            sent_at=format_timestamp(log.sent_at),
            failed_at=format_timestamp(log.failed_at),
        )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        from sqlalchemy import inspect

        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
