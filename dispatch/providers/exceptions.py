"""Custom exceptions for delivery providers.

Every provider failure carries a stable ``code`` that is persisted on the
failed delivery log, so the orchestrator can record the outcome without
knowing which backend produced it.
"""

from typing import Optional


class ProviderError(Exception):
    """Base exception for all provider errors.

    Catching this catches any failure of a single send attempt; the
    orchestrator records it and moves on to the next recipient.
    """

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        """Initialize with a human-readable message and optional code override.

        Args:
            message: Human-readable error message
            code: Stable error code; defaults to the class code
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ProviderAuthError(ProviderError):
    """Credentials were refused by the backend (bad key, bad relay login)."""

    code = "AUTH_FAILED"


class ProviderThrottled(ProviderError):
    """The backend asked us to slow down."""

    code = "THROTTLED"


class ProviderRejected(ProviderError):
    """The backend refused the message itself.

    Uses ``MESSAGE_REJECTED`` by default and ``SENDER_NOT_VERIFIED`` when the
    sender identity or domain is not verified.
    """

    code = "MESSAGE_REJECTED"


class ProviderTimeout(ProviderError):
    """The provider call did not finish within the configured timeout."""

    code = "TIMEOUT"


class ProviderConnectionError(ProviderError):
    """The backend could not be reached (DNS, refused connection, TLS failure)."""

    code = "CONNECTION_FAILED"


class ProviderConfigurationError(ProviderError):
    """Settings or credentials are unusable, so no provider can be built."""

    code = "INVALID_CONFIGURATION"


class InvalidMessageError(ProviderError):
    """The message failed pre-send validation (no recipients, empty subject or body)."""

    code = "INVALID_MESSAGE"
