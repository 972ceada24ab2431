"""Delivery providers: Amazon SES platform backend and SMTP relay backend."""

from .base import ConnectionCheckResult, DeliveryProvider, SendResult, validate_send_inputs
from .exceptions import (
    InvalidMessageError,
    ProviderAuthError,
    ProviderConfigurationError,
    ProviderConnectionError,
    ProviderError,
    ProviderRejected,
    ProviderThrottled,
    ProviderTimeout,
)
from .factory import ProviderFactory, create_provider
from .mime import build_message
from .platform import PlatformProvider
from .smtp import SMTPRelayProvider

__all__ = [
    "DeliveryProvider",
    "SendResult",
    "ConnectionCheckResult",
    "validate_send_inputs",
    "build_message",
    "PlatformProvider",
    "SMTPRelayProvider",
    "ProviderFactory",
    "create_provider",
    "ProviderError",
    "ProviderAuthError",
    "ProviderThrottled",
    "ProviderRejected",
    "ProviderTimeout",
    "ProviderConnectionError",
    "ProviderConfigurationError",
    "InvalidMessageError",
]
