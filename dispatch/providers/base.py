"""Delivery provider interface shared by the platform and relay backends.

A provider is selected per organization when the engine builds it from the
organization's EmailSettings; both backends expose the same three calls:
``send``, ``test_connection`` and ``validate_connection``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from email_validator import EmailNotValidError, validate_email

from dispatch.domain.models import Attachment
from dispatch.logging import get_logger
from dispatch.utils.timestamps import format_timestamp, utc_now

from .exceptions import InvalidMessageError, ProviderError

logger = get_logger(__name__, component="provider")

TEST_EMAIL_SUBJECT = "Email Configuration Test"


@dataclass
class SendResult:
    """Outcome of a successful provider call.

    Attributes:
        message_id: Identifier assigned by the backend (or our Message-ID header)
        provider_response: JSON-safe summary of the raw backend response
    """

    message_id: str
    provider_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectionCheckResult:
    """Unified result of ``test_connection`` / ``validate_connection``."""

    success: bool
    message: str
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "message": self.message}
        if self.message_id:
            data["message_id"] = self.message_id
        return data


class DeliveryProvider(ABC):
    """Interface every delivery backend implements."""

    #: Human-readable backend label used in logs and the test email
    label = "provider"

    @abstractmethod
    def send(
        self,
        to: Sequence[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        cc: Optional[Sequence[str]] = None,
        bcc: Optional[Sequence[str]] = None,
        reply_to: Optional[str] = None,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> SendResult:
        """Transmit one message.

        Raises:
            InvalidMessageError: If the message fails validation
            ProviderError: Any backend failure, mapped to a specific subclass
        """

    @abstractmethod
    def validate_connection(self) -> ConnectionCheckResult:
        """Check credentials/connectivity without sending anything."""

    @property
    @abstractmethod
    def sender_email(self) -> str:
        """Address mail is sent from."""

    def test_connection(self, test_address: str) -> ConnectionCheckResult:
        """Send the fixed verification email to ``test_address``.

        Never raises for provider failures; they are reported in the result.
        """
        subject, html_body, text_body = build_test_email(self.label, self.sender_email)

        try:
            result = self.send([test_address], subject, html_body, text_body)
        except ProviderError as e:
            logger.warning(
                f"Test email to {test_address} failed: {e.message}",
                extra={"event": "provider.test.failure", "error_code": e.code},
            )
            return ConnectionCheckResult(success=False, message=e.message or "Failed to send test email")

        logger.info(
            f"Test email sent to {test_address}",
            extra={"event": "provider.test.success", "message_id": result.message_id},
        )
        return ConnectionCheckResult(
            success=True,
            message="Test email sent successfully",
            message_id=result.message_id,
        )


def validate_send_inputs(
    to: Sequence[str],
    subject: str,
    html_body: str,
    cc: Optional[Sequence[str]] = None,
    bcc: Optional[Sequence[str]] = None,
) -> List[str]:
    """Check a message before it reaches a backend.

    Returns:
        The ``to`` addresses as a list

    Raises:
        InvalidMessageError: If there are no recipients, an address is malformed,
            or the subject or HTML body is blank
    """
    recipients = [address for address in (to or []) if address]
    if not recipients:
        raise InvalidMessageError("At least one recipient is required")

    if not subject or not subject.strip():
        raise InvalidMessageError("Subject is required")

    if not html_body or not html_body.strip():
        raise InvalidMessageError("Email body is required")

    for address in [*recipients, *(cc or []), *(bcc or [])]:
        try:
            validate_email(address, check_deliverability=False)
        except EmailNotValidError as e:
            raise InvalidMessageError(f"Invalid recipient address '{address}': {e}") from e

    return recipients


def build_test_email(provider_label: str, from_email: str) -> tuple[str, str, str]:
    """Return (subject, html_body, text_body) for the connection test email."""
    timestamp = format_timestamp(utc_now())

    html_body = f"""<!DOCTYPE html>
<html>
  <head><meta charset="UTF-8"></head>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="color: #2563eb;">Email Configuration Test</h2>
      <p>This is a test email from your notification email configuration.</p>
      <p>If you received this email, your {provider_label} integration is working correctly!</p>
      <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 20px 0;">
      <p style="font-size: 12px; color: #6b7280;">
        Provider: {provider_label}<br>
        Sent from: {from_email}<br>
        Timestamp: {timestamp}
      </p>
    </div>
  </body>
</html>
"""

    text_body = f"""Email Configuration Test

This is a test email from your notification email configuration.
If you received this email, your {provider_label} integration is working correctly!

Provider: {provider_label}
Sent from: {from_email}
Timestamp: {timestamp}
"""

    return TEST_EMAIL_SUBJECT, html_body, text_body
