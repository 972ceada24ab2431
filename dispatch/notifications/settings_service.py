"""Organization email settings: save, read (masked), enable, test and delete."""

from contextlib import AbstractContextManager
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dispatch.config.environment import EnvironmentConfig
from dispatch.config.models import RateLimitConfig
from dispatch.domain.models import EmailProvider, EmailSettings, SmtpConfig
from dispatch.logging import get_logger
from dispatch.persistence.database import get_session
from dispatch.persistence.repositories import EmailSettingsRepository
from dispatch.providers.base import ConnectionCheckResult, DeliveryProvider
from dispatch.providers.exceptions import ProviderError
from dispatch.providers.factory import ProviderFactory
from dispatch.security.encryption import CredentialCipher
from dispatch.utils.timestamps import format_timestamp, utc_now

logger = get_logger(__name__, component="settings")

MASKED_PASSWORD = "***********"


class EmailSettingsService:
    """Manages the per-organization EmailSettings record.

    The relay password is encrypted here on save and masked on read; it is only
    ever decrypted by the relay provider at connect time.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        rate_limits: Optional[RateLimitConfig] = None,
        provider_factory: Optional[Callable[[EmailSettings], DeliveryProvider]] = None,
        cipher: Optional[CredentialCipher] = None,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
    ):
        """Initialize the service.

        Args:
            env_config: Environment configuration (encryption key, platform credentials)
            rate_limits: Default caps applied when settings omit them
            provider_factory: Builds a provider from settings (defaults to ProviderFactory)
            cipher: Credential cipher (built from ENCRYPTION_KEY on first use if None)
            session_scope: Context manager factory yielding a transactional session
        """
        self.env_config = env_config
        self.rate_limits = rate_limits or RateLimitConfig()
        self._cipher = cipher
        self.provider_factory = provider_factory or ProviderFactory(env_config, cipher=cipher)
        self.session_scope = session_scope

    def save_settings(
        self,
        org_id: str,
        user_id: str,
        provider: EmailProvider,
        from_email: str,
        from_name: str = "",
        smtp: Optional[SmtpConfig] = None,
        reply_to_email: Optional[str] = None,
        max_emails_per_hour: Optional[int] = None,
        max_emails_per_day: Optional[int] = None,
    ) -> EmailSettings:
        """Create or replace an organization's settings.

        ``smtp.password`` is plaintext here. Passing None or the masked value
        keeps the password already stored. New settings start disabled with
        zeroed counters; existing settings keep their enabled flag, counters
        and window starts.

        Raises:
            EncryptionError: If a password must be encrypted and no valid key is configured
            ValueError: If the relay provider is selected without SMTP details
            PersistenceError: If database error occurs
        """
        provider = EmailProvider(provider)
        if provider == EmailProvider.SMTP and smtp is None:
            raise ValueError("SMTP connection details are required for the smtp provider")

        now = utc_now()
        with self.session_scope() as session:
            repo = EmailSettingsRepository(session)
            existing = repo.get(org_id)

            stored_smtp = None
            if provider == EmailProvider.SMTP:
                previous = existing.smtp if existing else None
                stored_smtp = self._encrypt_smtp(smtp, previous)

            fields = {
                "provider": provider,
                "smtp": stored_smtp,
                "from_email": from_email,
                "from_name": from_name,
                "reply_to_email": reply_to_email,
                "is_configured": True,
                "max_emails_per_hour": max_emails_per_hour or self.rate_limits.default_max_per_hour,
                "max_emails_per_day": max_emails_per_day or self.rate_limits.default_max_per_day,
                "updated_at": now,
            }

            if existing is not None:
                settings = existing.model_copy(update=fields)
            else:
                settings = EmailSettings(
                    org_id=org_id,
                    is_enabled=False,
                    current_hour_count=0,
                    current_day_count=0,
                    last_reset_hour=now,
                    last_reset_day=now,
                    created_by=user_id,
                    created_at=now,
                    **fields,
                )

            saved = repo.upsert(settings)

        logger.info(
            f"Saved email settings for org {org_id} (provider={provider.value})",
            extra={"event": "settings.saved", "org_id": org_id},
        )
        return _masked(saved)

    def get_settings(self, org_id: str, include_decrypted: bool = False) -> Optional[EmailSettings]:
        """Return settings with the relay password masked.

        With ``include_decrypted`` the stored value is returned unmasked (still
        the encrypted token; only the relay provider decrypts it).
        """
        with self.session_scope() as session:
            settings = EmailSettingsRepository(session).get(org_id)

        if settings is None or include_decrypted:
            return settings
        return _masked(settings)

    def set_enabled(self, org_id: str, enabled: bool) -> Optional[EmailSettings]:
        """Toggle sending; returns the updated settings or None if absent."""
        with self.session_scope() as session:
            repo = EmailSettingsRepository(session)
            if repo.get(org_id) is None:
                return None
            repo.set_enabled(org_id, enabled)
            settings = repo.get(org_id)

        logger.info(
            f"Email notifications {'enabled' if enabled else 'disabled'} for org {org_id}",
            extra={"event": "settings.enabled" if enabled else "settings.disabled"},
        )
        return _masked(settings)

    def delete_settings(self, org_id: str) -> bool:
        with self.session_scope() as session:
            return EmailSettingsRepository(session).delete(org_id)

    def test_settings(self, org_id: str, test_email: str) -> ConnectionCheckResult:
        """Send the verification email and record the outcome on the settings.

        Never raises for provider problems; failures come back in the result.
        """
        settings = self.get_settings(org_id, include_decrypted=True)
        if settings is None or not settings.is_configured:
            return ConnectionCheckResult(success=False, message="Email settings not configured")

        try:
            provider = self.provider_factory(settings)
            result = provider.test_connection(test_email)
        except ProviderError as e:
            logger.warning(
                f"Could not build provider for org {org_id}: {e.message}",
                extra={"event": "settings.test.failure", "error_code": e.code},
            )
            result = ConnectionCheckResult(
                success=False, message=e.message or "Failed to test email settings"
            )

        tested_at = utc_now()
        with self.session_scope() as session:
            EmailSettingsRepository(session).record_test_result(
                org_id,
                tested_at,
                {
                    "success": result.success,
                    "message": result.message,
                    "timestamp": format_timestamp(tested_at),
                },
            )

        return result

    def validate_settings(self, org_id: str) -> ConnectionCheckResult:
        """Run the provider's side-effect-free connection check."""
        settings = self.get_settings(org_id, include_decrypted=True)
        if settings is None or not settings.is_configured:
            return ConnectionCheckResult(success=False, message="Email settings not configured")

        try:
            return self.provider_factory(settings).validate_connection()
        except ProviderError as e:
            return ConnectionCheckResult(success=False, message=e.message)

    def _encrypt_smtp(self, smtp: SmtpConfig, previous: Optional[SmtpConfig]) -> SmtpConfig:
        password = smtp.password
        if not password or password == MASKED_PASSWORD:
            kept = previous.password if previous else None
            return smtp.model_copy(update={"password": kept})

        return smtp.model_copy(update={"password": self._get_cipher().encrypt(password)})

    def _get_cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = CredentialCipher(self.env_config.encryption_key)
        return self._cipher


def _masked(settings: EmailSettings) -> EmailSettings:
    if settings.smtp is None or not settings.smtp.password:
        return settings
    return settings.model_copy(
        update={"smtp": settings.smtp.model_copy(update={"password": MASKED_PASSWORD})}
    )
