"""Environment variable loading and validation."""

import os
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/notifications.db"
DEFAULT_SES_REGION = "us-east-1"


class EnvironmentConfig:
    """Environment variable configuration holder.

    Holds process-level secrets: the database URL, the Fernet key used for
    relay passwords, and the platform (SES) credentials. Organization-level
    settings live in the database, not here.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        encryption_key: Optional[str] = None,
        aws_ses_access_key_id: Optional[str] = None,
        aws_ses_secret_access_key: Optional[str] = None,
        aws_ses_region: Optional[str] = None,
        aws_ses_from_email: Optional[str] = None,
        aws_ses_from_name: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.encryption_key = encryption_key
        self.aws_ses_access_key_id = aws_ses_access_key_id
        self.aws_ses_secret_access_key = aws_ses_secret_access_key
        self.aws_ses_region = aws_ses_region or DEFAULT_SES_REGION
        self.aws_ses_from_email = aws_ses_from_email
        self.aws_ses_from_name = aws_ses_from_name
        self.log_level = log_level
        self.environment = environment or "local"

    @property
    def platform_configured(self) -> bool:
        """Whether platform (SES) credentials are present."""
        return bool(self.aws_ses_access_key_id and self.aws_ses_secret_access_key)

    def __repr__(self) -> str:
        return (
            f"EnvironmentConfig(database_url={self.database_url!r}, "
            f"aws_ses_region={self.aws_ses_region!r}, "
            f"platform_configured={self.platform_configured}, "
            f"encryption_key={'set' if self.encryption_key else 'unset'})"
        )


def load_environment_config() -> EnvironmentConfig:
    """Load and validate environment variables.

    Optional environment variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/notifications.db)
    - ENCRYPTION_KEY: Fernet key for SMTP relay passwords
    - AWS_SES_ACCESS_KEY_ID / AWS_SES_SECRET_ACCESS_KEY: platform credentials (both or neither)
    - AWS_SES_REGION: platform region (default: us-east-1)
    - AWS_SES_FROM_EMAIL / AWS_SES_FROM_NAME: platform sender identity overrides
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - ENVIRONMENT: environment label for logs

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is invalid
    """
    errors = []

    access_key = os.getenv("AWS_SES_ACCESS_KEY_ID")
    secret_key = os.getenv("AWS_SES_SECRET_ACCESS_KEY")
    from_email = os.getenv("AWS_SES_FROM_EMAIL")
    log_level = os.getenv("LOG_LEVEL")

    if access_key and not secret_key:
        errors.append(
            "AWS_SES_ACCESS_KEY_ID is set but AWS_SES_SECRET_ACCESS_KEY is not. "
            "Both must be set for the platform provider."
        )
    elif secret_key and not access_key:
        errors.append(
            "AWS_SES_SECRET_ACCESS_KEY is set but AWS_SES_ACCESS_KEY_ID is not. "
            "Both must be set for the platform provider."
        )

    if from_email:
        try:
            validate_email(from_email, check_deliverability=False)
        except EmailNotValidError as e:
            errors.append(f"Invalid AWS_SES_FROM_EMAIL '{from_email}': {e}")

    if log_level:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level.upper() not in valid_levels:
            errors.append(
                f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(valid_levels)}"
            )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Set both AWS SES keys or neither",
                "Generate ENCRYPTION_KEY with cryptography.fernet.Fernet.generate_key()",
            ],
        )

    return EnvironmentConfig(
        database_url=os.getenv("DATABASE_URL"),
        encryption_key=os.getenv("ENCRYPTION_KEY"),
        aws_ses_access_key_id=access_key,
        aws_ses_secret_access_key=secret_key,
        aws_ses_region=os.getenv("AWS_SES_REGION"),
        aws_ses_from_email=from_email,
        aws_ses_from_name=os.getenv("AWS_SES_FROM_NAME"),
        log_level=log_level,
        environment=os.getenv("ENVIRONMENT"),
    )
