"""Relay backend: delivers through an organization-supplied SMTP server.

Wraps smtplib with TLS/SSL negotiation, authentication with a password that
is decrypted only when a connection is opened, and connection cleanup on
success and failure. SMTP classes are injectable for testing.
"""

import smtplib
import ssl
from typing import Callable, Optional, Sequence

from dispatch.domain.models import Attachment, SmtpConfig, format_sender
from dispatch.logging import get_logger
from dispatch.security.encryption import CredentialCipher, EncryptionError

from .base import (
    ConnectionCheckResult,
    DeliveryProvider,
    SendResult,
    validate_send_inputs,
)
from .exceptions import (
    ProviderAuthError,
    ProviderConfigurationError,
    ProviderConnectionError,
    ProviderError,
    ProviderRejected,
    ProviderThrottled,
    ProviderTimeout,
)
from .mime import build_message

logger = get_logger(__name__, component="provider")

IMPLICIT_TLS_PORT = 465
AUTH_FAILED_MESSAGE = "SMTP authentication failed. Check username and password."
CONNECTION_FAILED_MESSAGE = "Cannot connect to SMTP server. Check host and port."


class SMTPRelayProvider(DeliveryProvider):
    """Send mail through the organization's own SMTP relay."""

    label = "Custom SMTP"

    def __init__(
        self,
        smtp_config: SmtpConfig,
        from_email: str,
        from_name: str = "",
        cipher: Optional[CredentialCipher] = None,
        timeout: int = 30,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        """Initialize the relay provider.

        Args:
            smtp_config: Host, port, TLS flags and credentials (password encrypted)
            from_email: Sender address
            from_name: Sender display name
            cipher: Cipher used to decrypt the stored password at connect time
            timeout: Socket timeout for every SMTP operation (seconds)
            smtp_factory: Factory for SMTP instances (for mocking)
            smtp_ssl_factory: Factory for SMTP_SSL instances (for mocking)

        Raises:
            ProviderConfigurationError: If a password is stored but no cipher is available
        """
        if smtp_config.password and cipher is None:
            raise ProviderConfigurationError(
                "SMTP password is set but no encryption key is configured to decrypt it"
            )

        self.smtp_config = smtp_config
        self.from_email = from_email
        self.from_name = from_name
        self.cipher = cipher
        self.timeout = timeout
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    @property
    def sender_email(self) -> str:
        return self.from_email

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
        """Send one message through the relay.

        Raises:
            InvalidMessageError: If the message fails validation
            ProviderAuthError: Login refused
            ProviderRejected: Sender, recipients or data refused
            ProviderThrottled: Server answered with a 421 "try later"
            ProviderTimeout: Socket timeout
            ProviderConnectionError: Host unreachable, TLS failure, disconnect
            ProviderError: Any other SMTP failure
        """
        recipients = validate_send_inputs(to, subject, html_body, cc, bcc)

        message = build_message(
            sender=format_sender(self.from_email, self.from_name),
            to=recipients,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            cc=cc,
            reply_to=reply_to,
            attachments=attachments,
        )
        envelope = [*recipients, *(cc or []), *(bcc or [])]

        smtp = None
        try:
            smtp = self._connect()
            refused = smtp.send_message(message, to_addrs=envelope)
        except ProviderError:
            raise
        except Exception as e:
            raise _map_smtp_error(e) from e
        finally:
            self._close(smtp)

        message_id = message["Message-ID"]
        logger.debug(
            f"Message {message_id} relayed via {self.smtp_config.host}",
            extra={"event": "provider.smtp.sent", "recipient_count": len(envelope)},
        )
        return SendResult(
            message_id=message_id,
            provider_response={
                "host": self.smtp_config.host,
                "accepted": [address for address in envelope if address not in (refused or {})],
                "refused": {address: str(reason) for address, reason in (refused or {}).items()},
            },
        )

    def validate_connection(self) -> ConnectionCheckResult:
        """Connect, negotiate TLS, authenticate and NOOP; never sends mail."""
        smtp = None
        try:
            smtp = self._connect()
            smtp.noop()
        except ProviderError as e:
            return ConnectionCheckResult(success=False, message=_validation_message(e))
        except Exception as e:
            return ConnectionCheckResult(success=False, message=_validation_message(_map_smtp_error(e)))
        finally:
            self._close(smtp)

        return ConnectionCheckResult(success=True, message="SMTP connection is valid")

    def _connect(self):
        """Open, secure and authenticate a connection.

        Port 465 (or ``secure``) uses implicit TLS; otherwise STARTTLS is
        mandatory when ``require_tls`` is set and opportunistic when not.
        """
        config = self.smtp_config

        if config.secure or config.port == IMPLICIT_TLS_PORT:
            logger.debug(f"Connecting to {config.host}:{config.port} with implicit TLS")
            smtp = self.smtp_ssl_factory(
                config.host,
                config.port,
                context=ssl.create_default_context(),
                timeout=self.timeout,
            )
        else:
            logger.debug(f"Connecting to {config.host}:{config.port}")
            smtp = self.smtp_factory(config.host, config.port, timeout=self.timeout)
            try:
                if config.require_tls:
                    smtp.starttls(context=ssl.create_default_context())
                else:
                    smtp.ehlo_or_helo_if_needed()
                    if smtp.has_extn("starttls"):
                        smtp.starttls(context=ssl.create_default_context())
            except Exception:
                self._close(smtp)
                raise

        if config.username:
            try:
                smtp.login(config.username, self._password())
            except Exception:
                self._close(smtp)
                raise

        return smtp

    def _password(self) -> str:
        if not self.smtp_config.password:
            return ""
        try:
            return self.cipher.decrypt(self.smtp_config.password)
        except EncryptionError as e:
            raise ProviderConfigurationError(str(e)) from e

    @staticmethod
    def _close(smtp) -> None:
        if smtp is None:
            return
        try:
            smtp.quit()
        except Exception as e:
            logger.warning(f"Error closing SMTP connection: {e}")


def _map_smtp_error(error: Exception) -> ProviderError:
    """Translate smtplib/socket failures into provider errors."""
    if isinstance(error, smtplib.SMTPAuthenticationError):
        return ProviderAuthError(AUTH_FAILED_MESSAGE)
    if isinstance(error, smtplib.SMTPRecipientsRefused):
        return ProviderRejected(f"All recipients were refused: {', '.join(error.recipients)}")
    if isinstance(error, (smtplib.SMTPSenderRefused, smtplib.SMTPDataError)):
        if error.smtp_code == 421:
            return ProviderThrottled(f"SMTP Error {error.smtp_code}: {_decode(error.smtp_error)}")
        return ProviderRejected(f"SMTP Error {error.smtp_code}: {_decode(error.smtp_error)}")
    if isinstance(error, smtplib.SMTPNotSupportedError):
        return ProviderConnectionError(f"SMTP server does not support a required extension: {error}")
    if isinstance(error, (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected)):
        return ProviderConnectionError(CONNECTION_FAILED_MESSAGE)
    if isinstance(error, smtplib.SMTPResponseException):
        return ProviderError(f"SMTP Error {error.smtp_code}: {_decode(error.smtp_error)}", code="SMTP_ERROR")
    if isinstance(error, smtplib.SMTPException):
        return ProviderError(f"Failed to send email via SMTP: {error}", code="SMTP_ERROR")
    if isinstance(error, TimeoutError):
        return ProviderTimeout(f"SMTP operation timed out: {error}")
    if isinstance(error, OSError):
        return ProviderConnectionError(CONNECTION_FAILED_MESSAGE)
    return ProviderError(f"Unexpected error during SMTP delivery: {error}")


def _validation_message(error: ProviderError) -> str:
    if isinstance(error, ProviderAuthError):
        return AUTH_FAILED_MESSAGE
    if isinstance(error, (ProviderConnectionError, ProviderTimeout)):
        return CONNECTION_FAILED_MESSAGE
    return error.message or "SMTP connection failed"


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
