"""Configuration management for the notification dispatch engine."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_app_config, load_config
from .models import (
    AppConfig,
    DeliveryConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    RateLimitConfig,
    RetryConfig,
)

__all__ = [
    "load_config",
    "load_app_config",
    "load_environment_config",
    "AppConfig",
    "DeliveryConfig",
    "RateLimitConfig",
    "RetryConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    "LogLevel",
    "LogFormat",
    "ConfigurationError",
]
