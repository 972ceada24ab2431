"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """Check raw configuration for settings that are legal but suspicious.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    rate_limits = config_dict.get("rate_limits") or {}
    if isinstance(rate_limits, dict):
        per_hour = rate_limits.get("default_max_per_hour")
        if isinstance(per_hour, int) and per_hour > 10000:
            warning_messages.append(
                f"Very high default_max_per_hour ({per_hour}) may exceed provider quotas"
            )

    delivery = config_dict.get("delivery") or {}
    retry = config_dict.get("retry") or {}
    if isinstance(delivery, dict) and isinstance(retry, dict):
        if retry.get("enabled") and delivery.get("max_retries") == 0:
            warning_messages.append(
                "Retry sweep is enabled but delivery.max_retries is 0; nothing will be retried"
            )

    if isinstance(delivery, dict):
        timeout = delivery.get("provider_timeout_seconds")
        if isinstance(timeout, int) and timeout < 10:
            warning_messages.append(
                f"Short provider_timeout_seconds ({timeout}) may fail slow relays"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
