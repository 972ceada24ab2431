"""Configuration schema models using Pydantic."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class DeliveryConfig(BaseModel):
    """Provider call and worker pool settings."""

    provider_timeout_seconds: int = Field(
        30, ge=1, le=120, description="Timeout applied to every provider call (seconds)"
    )
    max_retries: int = Field(
        3, ge=0, le=10, description="Retry budget recorded on each delivery log"
    )
    worker_count: int = Field(
        4, ge=1, le=64, description="Threads used for fire-and-forget triggering"
    )
    queue_size: int = Field(
        1000, ge=1, description="Maximum triggers queued or running at once"
    )


class RateLimitConfig(BaseModel):
    """Default per-organization send caps."""

    default_max_per_hour: int = Field(100, ge=1, description="Default hourly cap")
    default_max_per_day: int = Field(1000, ge=1, description="Default daily cap")

    @model_validator(mode="after")
    def validate_caps(self):
        if self.default_max_per_hour > self.default_max_per_day:
            raise ValueError(
                "default_max_per_hour cannot exceed default_max_per_day"
            )
        return self


class RetryConfig(BaseModel):
    """Periodic sweep that resends failed deliveries."""

    enabled: bool = Field(False, description="Run the retry sweep on a schedule")
    interval_seconds: int = Field(
        900, ge=60, le=86400, description="Seconds between retry sweeps"
    )
    batch_size: int = Field(50, ge=1, le=500, description="Failed logs per sweep")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification dispatch engine."""

    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
