"""Platform backend: delivers through Amazon SES with process-level credentials.

Credentials and the optional sender identity override come from the
environment (AWS_SES_*), never from the organization record. Messages with
attachments are sent as raw MIME; everything else uses the structured
``send_email`` call.
"""

from typing import Any, Dict, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from dispatch.config.environment import EnvironmentConfig
from dispatch.domain.models import Attachment, format_sender
from dispatch.logging import get_logger

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
from .mime import build_message, to_raw_bytes

logger = get_logger(__name__, component="provider")

CHARSET = "UTF-8"


class PlatformProvider(DeliveryProvider):
    """Send mail through the platform's Amazon SES account."""

    label = "Platform Email (AWS SES)"

    def __init__(
        self,
        env_config: EnvironmentConfig,
        from_email: str,
        from_name: str = "",
        timeout: int = 30,
        client: Optional[Any] = None,
    ):
        """Initialize the platform provider.

        Args:
            env_config: Environment configuration holding the SES credentials
            from_email: Organization sender address (used when AWS_SES_FROM_EMAIL is unset)
            from_name: Organization sender name (used when AWS_SES_FROM_NAME is unset)
            timeout: Connect and read timeout for SES calls (seconds)
            client: Pre-built SES client (for mocking)

        Raises:
            ProviderConfigurationError: If the platform credentials are missing
        """
        if client is None and not env_config.platform_configured:
            raise ProviderConfigurationError(
                "Platform email provider not configured. Missing AWS_SES_ACCESS_KEY_ID "
                "or AWS_SES_SECRET_ACCESS_KEY in environment variables."
            )

        self.region = env_config.aws_ses_region
        self.from_email = env_config.aws_ses_from_email or from_email
        self.from_name = env_config.aws_ses_from_name or from_name
        self.timeout = timeout

        self.client = client or boto3.client(
            "ses",
            aws_access_key_id=env_config.aws_ses_access_key_id,
            aws_secret_access_key=env_config.aws_ses_secret_access_key,
            region_name=self.region,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 1},
            ),
        )

    @property
    def sender_email(self) -> str:
        return self.from_email

    @property
    def source(self) -> str:
        return format_sender(self.from_email, self.from_name)

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
        """Send one message through SES.

        Raises:
            InvalidMessageError: If the message fails validation
            ProviderRejected: MessageRejected / MailFromDomainNotVerifiedException
            ProviderThrottled: Throttling / ThrottlingException
            ProviderAuthError: InvalidClientTokenId / SignatureDoesNotMatch / missing credentials
            ProviderTimeout: Connect or read timeout
            ProviderConnectionError: Endpoint unreachable
            ProviderError: Any other SES failure
        """
        recipients = validate_send_inputs(to, subject, html_body, cc, bcc)

        try:
            if attachments:
                response = self._send_raw(
                    recipients, subject, html_body, text_body, cc, bcc, reply_to, attachments
                )
            else:
                response = self._send_structured(
                    recipients, subject, html_body, text_body, cc, bcc, reply_to
                )
        except (ClientError, BotoCoreError) as e:
            error = _map_ses_error(e)
            logger.error(
                f"SES send failed: {error.message}",
                extra={"event": "provider.ses.failure", "error_code": error.code},
            )
            raise error from e

        metadata = response.get("ResponseMetadata", {})
        return SendResult(
            message_id=response.get("MessageId", ""),
            provider_response={
                "MessageId": response.get("MessageId"),
                "RequestId": metadata.get("RequestId"),
                "HTTPStatusCode": metadata.get("HTTPStatusCode"),
                "region": self.region,
            },
        )

    def validate_connection(self) -> ConnectionCheckResult:
        """Look up the sender identity's verification status (no mail is sent)."""
        try:
            response = self.client.get_identity_verification_attributes(
                Identities=[self.from_email]
            )
        except (ClientError, BotoCoreError) as e:
            error = _map_ses_error(e)
            return ConnectionCheckResult(success=False, message=error.message)

        attributes = response.get("VerificationAttributes", {}).get(self.from_email, {})
        status = attributes.get("VerificationStatus", "Pending")
        logger.debug(
            f"SES identity {self.from_email} verification status: {status}",
            extra={"event": "provider.ses.validated"},
        )
        return ConnectionCheckResult(
            success=True, message="Platform email provider connection is valid"
        )

    def _send_structured(self, to, subject, html_body, text_body, cc, bcc, reply_to) -> Dict[str, Any]:
        destination: Dict[str, Any] = {"ToAddresses": list(to)}
        if cc:
            destination["CcAddresses"] = list(cc)
        if bcc:
            destination["BccAddresses"] = list(bcc)

        body: Dict[str, Any] = {"Html": {"Data": html_body, "Charset": CHARSET}}
        if text_body:
            body["Text"] = {"Data": text_body, "Charset": CHARSET}

        params: Dict[str, Any] = {
            "Source": self.source,
            "Destination": destination,
            "Message": {
                "Subject": {"Data": subject, "Charset": CHARSET},
                "Body": body,
            },
        }
        if reply_to:
            params["ReplyToAddresses"] = [reply_to]

        return self.client.send_email(**params)

    def _send_raw(self, to, subject, html_body, text_body, cc, bcc, reply_to, attachments) -> Dict[str, Any]:
        message = build_message(
            sender=self.source,
            to=to,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            cc=cc,
            reply_to=reply_to,
            attachments=attachments,
        )
        return self.client.send_raw_email(
            Source=self.source,
            Destinations=[*to, *(cc or []), *(bcc or [])],
            RawMessage={"Data": to_raw_bytes(message)},
        )


def _map_ses_error(error: Exception) -> ProviderError:
    """Translate botocore failures into provider errors."""
    if isinstance(error, (ConnectTimeoutError, ReadTimeoutError)):
        return ProviderTimeout(f"SES request timed out: {error}")
    if isinstance(error, EndpointConnectionError):
        return ProviderConnectionError(f"Cannot reach SES endpoint: {error}")
    if isinstance(error, NoCredentialsError):
        return ProviderAuthError("AWS SES credentials are not available")
    if not isinstance(error, ClientError):
        return ProviderError(f"Failed to send email via AWS SES: {error}")

    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = details.get("Message") or "Failed to send email via AWS SES"

    if code == "MessageRejected":
        return ProviderRejected("Email rejected by SES. Check sender verification.")
    if code == "MailFromDomainNotVerifiedException":
        return ProviderRejected("Sender domain not verified in SES.", code="SENDER_NOT_VERIFIED")
    if code in ("Throttling", "ThrottlingException"):
        return ProviderThrottled("Rate limit exceeded. Please try again later.")
    if code == "InvalidClientTokenId":
        return ProviderAuthError("Invalid AWS Access Key ID")
    if code == "SignatureDoesNotMatch":
        return ProviderAuthError("Invalid AWS Secret Access Key")
    if code == "ConfigurationSetDoesNotExistException":
        return ProviderConfigurationError("SES configuration set does not exist.")
    return ProviderError(message, code=f"SES_{code}" if code else None)
