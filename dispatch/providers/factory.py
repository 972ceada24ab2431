"""Factory for building the delivery provider an organization has selected."""

import logging
from typing import Optional

from dispatch.config.environment import EnvironmentConfig
from dispatch.domain.models import EmailProvider, EmailSettings
from dispatch.security.encryption import CredentialCipher, EncryptionError

from .base import DeliveryProvider
from .exceptions import ProviderConfigurationError
from .platform import PlatformProvider
from .smtp import SMTPRelayProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Callable that turns EmailSettings into a ready DeliveryProvider.

    Holds the process-level pieces (environment credentials, cipher, timeout)
    so the engine only has to pass the organization's settings.

    Example:
        >>> factory = ProviderFactory(env_config, timeout=30)
        >>> provider = factory(settings)
        >>> provider.send(["ops@example.com"], "Hello", "<p>Hi</p>")
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        timeout: int = 30,
        cipher: Optional[CredentialCipher] = None,
    ):
        self.env_config = env_config
        self.timeout = timeout
        self._cipher = cipher

    def __call__(self, settings: EmailSettings) -> DeliveryProvider:
        return create_provider(settings, self.env_config, self.timeout, self._get_cipher)

    def _get_cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = CredentialCipher(self.env_config.encryption_key)
        return self._cipher


def create_provider(
    settings: EmailSettings,
    env_config: EnvironmentConfig,
    timeout: int = 30,
    cipher_source=None,
) -> DeliveryProvider:
    """Instantiate the backend named by ``settings.provider``.

    Args:
        settings: Organization email settings
        env_config: Environment configuration (platform credentials, encryption key)
        timeout: Provider call timeout in seconds
        cipher_source: Zero-argument callable returning a CredentialCipher; only
            invoked when the relay settings carry a password

    Returns:
        PlatformProvider or SMTPRelayProvider

    Raises:
        ProviderConfigurationError: If the settings cannot produce a working provider
    """
    provider = EmailProvider(settings.provider)

    logger.debug(
        "Creating delivery provider",
        extra={"org_id": settings.org_id, "provider": provider.value},
    )

    if provider == EmailProvider.PLATFORM:
        return PlatformProvider(
            env_config=env_config,
            from_email=settings.from_email,
            from_name=settings.from_name,
            timeout=timeout,
        )

    if provider == EmailProvider.SMTP and settings.smtp is not None:
        cipher = None
        if settings.smtp.password:
            try:
                if cipher_source is not None:
                    cipher = cipher_source()
                else:
                    cipher = CredentialCipher(env_config.encryption_key)
            except EncryptionError as e:
                raise ProviderConfigurationError(f"Cannot decrypt SMTP credentials: {e}") from e

        return SMTPRelayProvider(
            smtp_config=settings.smtp,
            from_email=settings.from_email,
            from_name=settings.from_name,
            cipher=cipher,
            timeout=timeout,
        )

    raise ProviderConfigurationError("Invalid email provider configuration")
