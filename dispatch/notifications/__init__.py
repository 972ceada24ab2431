"""Notification pipeline: preferences, templates, orchestration and retries."""

from .defaults import DefaultTemplate, get_default_templates
from .dispatcher import TriggerDispatcher
from .models import (
    NotificationError,
    RateLimitExceeded,
    RetryNotAllowed,
    RuleResult,
    SettingsNotConfigured,
    TemplateRenderError,
    TemplateValidationError,
)
from .preferences import should_send
from .retry import DeliveryRetryService, RetrySweepResult
from .service import NotificationEngine
from .settings_service import MASKED_PASSWORD, EmailSettingsService
from .template_service import TemplateService
from .templates import TemplateRenderer, TemplateValidationResult

__all__ = [
    "NotificationEngine",
    "TriggerDispatcher",
    "DeliveryRetryService",
    "RetrySweepResult",
    "EmailSettingsService",
    "MASKED_PASSWORD",
    "TemplateService",
    "TemplateRenderer",
    "TemplateValidationResult",
    "DefaultTemplate",
    "get_default_templates",
    "should_send",
    "RuleResult",
    "NotificationError",
    "TemplateRenderError",
    "TemplateValidationError",
    "RateLimitExceeded",
    "SettingsNotConfigured",
    "RetryNotAllowed",
]
