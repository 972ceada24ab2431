"""Core domain models for rules, templates, recipients, and deliveries.

This module defines the data structures used throughout the engine:
- NotificationRule: event + conditions -> template + recipient specs
- NotificationTemplate: subject/HTML/text bodies in the substitution grammar
- User / RecipientAddress: who can receive mail and where it goes
- UserNotificationPreferences: per-user opt-outs and do-not-disturb
- EmailSettings / RateLimitState: per-organization provider and send caps
- EmailDeliveryLog: the durable record of one attempted send
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from dispatch.utils.timestamps import ensure_utc, utc_now

EXTERNAL_USER_ID = "external"


def new_id() -> str:
    """Generate a new opaque record identifier."""
    return uuid.uuid4().hex


def format_sender(from_email: str, from_name: Optional[str]) -> str:
    """Build a ``Name <address>`` From value, or the bare address without a name."""
    if from_name:
        return f"{from_name} <{from_email}>"
    return from_email


class NotificationEvent(str, Enum):
    """Closed set of events the engine can be triggered with."""

    # Tickets
    TICKET_CREATED = "ticket.created"
    TICKET_UPDATED = "ticket.updated"
    TICKET_ASSIGNED = "ticket.assigned"
    TICKET_STATUS_CHANGED = "ticket.status_changed"
    TICKET_RESOLVED = "ticket.resolved"
    TICKET_CLOSED = "ticket.closed"
    TICKET_COMMENT_ADDED = "ticket.comment_added"
    TICKET_ESCALATED = "ticket.escalated"
    TICKET_SLA_WARNING = "ticket.sla_warning"
    # Incidents
    INCIDENT_CREATED = "incident.created"
    INCIDENT_UPDATED = "incident.updated"
    INCIDENT_STATUS_CHANGED = "incident.status_changed"
    INCIDENT_RESOLVED = "incident.resolved"
    INCIDENT_ASSIGNED = "incident.assigned"
    # Change requests
    CHANGE_CREATED = "change.created"
    CHANGE_UPDATED = "change.updated"
    CHANGE_APPROVED = "change.approved"
    CHANGE_REJECTED = "change.rejected"
    CHANGE_SCHEDULED = "change.scheduled"
    CHANGE_COMPLETED = "change.completed"
    # Projects
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    PROJECT_ASSIGNED = "project.assigned"
    PROJECT_TASK_ASSIGNED = "project.task_assigned"
    PROJECT_MILESTONE_REACHED = "project.milestone_reached"
    # Service requests
    SERVICE_REQUEST_CREATED = "service_request.created"
    SERVICE_REQUEST_APPROVED = "service_request.approved"
    SERVICE_REQUEST_REJECTED = "service_request.rejected"
    SERVICE_REQUEST_COMPLETED = "service_request.completed"
    # Users
    USER_ASSIGNED = "user.assigned"
    USER_MENTIONED = "user.mentioned"
    # Assets
    ASSET_ASSIGNED = "asset.assigned"
    ASSET_WARRANTY_EXPIRING = "asset.warranty_expiring"
    ASSET_MAINTENANCE_DUE = "asset.maintenance_due"


class ConditionOperator(str, Enum):
    """Operators a rule condition may use."""

    EQUALS = "equals"
    NOT_EQUALS = "not-equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not-contains"
    GREATER_THAN = "greater-than"
    LESS_THAN = "less-than"
    IS_EMPTY = "is-empty"
    IS_NOT_EMPTY = "is-not-empty"
    IN = "in"
    NOT_IN = "not-in"


class RecipientType(str, Enum):
    """Kinds of recipient specification a rule may carry."""

    REQUESTER = "requester"
    ASSIGNEE = "assignee"
    USER = "user"
    ROLE = "role"
    EMAIL = "email"


class NotificationFrequency(str, Enum):
    """How often a user wants to hear about an event."""

    IMMEDIATE = "immediate"
    DIGEST = "digest"
    NEVER = "never"


class DeliveryStatus(str, Enum):
    """Delivery log states: queued -> sending -> sent | failed."""

    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({DeliveryStatus.SENT, DeliveryStatus.FAILED})

ALLOWED_TRANSITIONS = {
    DeliveryStatus.QUEUED: frozenset({DeliveryStatus.SENDING}),
    DeliveryStatus.SENDING: frozenset({DeliveryStatus.SENT, DeliveryStatus.FAILED}),
    DeliveryStatus.SENT: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
}


class EmailProvider(str, Enum):
    """Delivery backends an organization can select."""

    PLATFORM = "platform"
    SMTP = "smtp"


class Condition(BaseModel):
    """One clause of a rule's AND-ed condition list.

    ``operator`` is kept as a raw string so that rules stored with an operator
    this version does not know still load; the matcher treats those as false.
    """

    field: str = Field(..., min_length=1, description="Dot-path into the event payload")
    operator: str = Field(..., description="One of ConditionOperator values")
    value: Any = Field(None, description="Expected value (a list for in/not-in)")


class RecipientSpec(BaseModel):
    """Typed reference that resolves to zero or more addresses."""

    type: RecipientType
    value: Optional[Union[str, List[str]]] = Field(
        None, description="User ids, role ids, or literal addresses depending on type"
    )

    def values(self) -> List[str]:
        """Return ``value`` normalized to a list without empty entries."""
        if self.value is None:
            return []
        raw = self.value if isinstance(self.value, list) else [self.value]
        return [item for item in raw if item]

    model_config = {"use_enum_values": False}


class NotificationRule(BaseModel):
    """Organization-defined mapping from an event to a template and recipients."""

    id: str = Field(default_factory=new_id)
    org_id: str
    name: str = ""
    description: str = ""
    event: NotificationEvent
    conditions: List[Condition] = Field(default_factory=list)
    recipients: List[RecipientSpec] = Field(default_factory=list)
    template_id: str
    priority: int = Field(100, description="Lower values are evaluated first")
    is_enabled: bool = True
    execution_count: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)
    last_executed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class NotificationTemplate(BaseModel):
    """Email template whose bodies use ``{{path.to.value}}`` substitution."""

    id: str = Field(default_factory=new_id)
    org_id: str
    name: str
    description: str = ""
    subject: str
    html_body: str
    text_body: Optional[str] = None
    available_variables: List[str] = Field(default_factory=list)
    event: NotificationEvent
    is_system: bool = False
    is_active: bool = True
    usage_count: int = Field(0, ge=0)
    last_used_at: Optional[datetime] = None
    preview_data: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class RenderedEmail(BaseModel):
    """Final strings produced by rendering a template."""

    subject: str
    html_body: str
    text_body: Optional[str] = None


class User(BaseModel):
    """Organization member that can receive notifications."""

    id: str = Field(default_factory=new_id)
    org_id: str
    email: str
    name: str = ""
    role_id: Optional[str] = None
    is_active: bool = True


class RecipientAddress(BaseModel):
    """Resolved destination: a user id (or ``external``) and an address."""

    user_id: str
    email: str

    @property
    def is_external(self) -> bool:
        return self.user_id == EXTERNAL_USER_ID


class EventPreference(BaseModel):
    """Per-event opt-in entry."""

    enabled: bool = True
    frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE


class UserNotificationPreferences(BaseModel):
    """Per (user, organization) notification preferences."""

    user_id: str
    org_id: str
    email_notifications_enabled: bool = True
    digest_mode: bool = False
    do_not_disturb: bool = False
    do_not_disturb_until: Optional[datetime] = None
    preferences: Dict[str, EventPreference] = Field(default_factory=dict)

    @field_validator("do_not_disturb_until")
    @classmethod
    def normalize_until(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class RateLimitState(BaseModel):
    """Rolling hourly/daily counters for one organization."""

    org_id: str
    max_per_hour: int = Field(..., ge=0)
    max_per_day: int = Field(..., ge=0)
    current_hour_count: int = Field(0, ge=0)
    current_day_count: int = Field(0, ge=0)
    last_reset_hour: datetime
    last_reset_day: datetime


class RateLimitStatus(BaseModel):
    """Outcome of a rate-limit check."""

    can_send: bool
    hourly_remaining: int
    daily_remaining: int


class SmtpConfig(BaseModel):
    """Organization-supplied relay connection; ``password`` is Fernet ciphertext at rest."""

    host: str = Field(..., min_length=1)
    port: int = Field(587, ge=1, le=65535)
    secure: bool = Field(False, description="Implicit TLS (usually port 465)")
    username: Optional[str] = None
    password: Optional[str] = None
    require_tls: bool = True


class EmailSettings(BaseModel):
    """Per-organization delivery configuration and rate-limit state."""

    id: str = Field(default_factory=new_id)
    org_id: str
    provider: EmailProvider = EmailProvider.PLATFORM
    smtp: Optional[SmtpConfig] = None
    from_email: str
    from_name: str = ""
    reply_to_email: Optional[str] = None
    is_enabled: bool = False
    is_configured: bool = False
    max_emails_per_hour: int = Field(100, ge=0)
    max_emails_per_day: int = Field(1000, ge=0)
    current_hour_count: int = Field(0, ge=0)
    current_day_count: int = Field(0, ge=0)
    last_reset_hour: datetime = Field(default_factory=utc_now)
    last_reset_day: datetime = Field(default_factory=utc_now)
    last_tested_at: Optional[datetime] = None
    last_test_result: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def sender(self) -> str:
        """Formatted From header value."""
        return format_sender(self.from_email, self.from_name)

    @property
    def is_active(self) -> bool:
        """Whether the engine should send for this organization at all."""
        return self.is_enabled and self.is_configured

    def rate_limit_state(self) -> RateLimitState:
        return RateLimitState(
            org_id=self.org_id,
            max_per_hour=self.max_emails_per_hour,
            max_per_day=self.max_emails_per_day,
            current_hour_count=self.current_hour_count,
            current_day_count=self.current_day_count,
            last_reset_hour=self.last_reset_hour,
            last_reset_day=self.last_reset_day,
        )


class Attachment(BaseModel):
    """File attached to an outgoing message."""

    filename: str = Field(..., min_length=1)
    content: bytes
    content_type: str = "application/octet-stream"


class StatusHistoryEntry(BaseModel):
    """One transition in a delivery log's history."""

    status: DeliveryStatus
    timestamp: datetime = Field(default_factory=utc_now)
    message: Optional[str] = None


class DeliveryError(BaseModel):
    """Structured failure stored on a failed delivery log."""

    message: str
    code: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class EmailDeliveryLog(BaseModel):
    """Durable record of one attempted send to one recipient."""

    id: str = Field(default_factory=new_id)
    org_id: str
    to: List[str]
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    from_address: str
    reply_to: Optional[str] = None
    subject: str
    html_body: str
    text_body: Optional[str] = None
    event: NotificationEvent
    rule_id: Optional[str] = None
    template_id: Optional[str] = None
    recipient_user_id: Optional[str] = None
    related_entity: Optional[Dict[str, Any]] = None
    status: DeliveryStatus = DeliveryStatus.QUEUED
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    provider_message_id: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None
    error: Optional[DeliveryError] = None
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(3, ge=0)
    parent_log_id: Optional[str] = None
    queued_at: datetime = Field(default_factory=utc_now)
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.status == DeliveryStatus.FAILED and self.retry_count < self.max_retries
