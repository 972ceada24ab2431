"""Configuration loader for the notification dispatch engine."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings

DEFAULT_CANDIDATES = [
    Path("config.yaml"),
    Path("config") / "config.yaml",
]


def load_config(
    config_path: Optional[Path] = None,
    allow_missing: bool = True,
) -> tuple[AppConfig, EnvironmentConfig]:
    """Load and validate configuration from YAML and environment variables.

    Config file lookup:
    1. ``config_path`` if given (must exist)
    2. config.yaml in the current directory
    3. ./config/config.yaml
    4. Defaults, when ``allow_missing`` is True

    Args:
        config_path: Optional path to configuration file
        allow_missing: Fall back to defaults when no file is found

    Returns:
        Tuple of (AppConfig, EnvironmentConfig)

    Raises:
        ConfigurationError: If configuration is invalid or required file is missing
    """
    config_file = _find_config_file(config_path, allow_missing)

    if config_file is None:
        app_config = AppConfig()
    else:
        app_config = load_app_config(config_file)

    try:
        env_config = load_environment_config()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load environment configuration: {e}",
            suggestions=["Ensure all environment variables are well formed"],
        ) from e

    return app_config, env_config


def load_app_config(config_file: Path) -> AppConfig:
    """Parse and validate a single YAML configuration file.

    Raises:
        ConfigurationError: If the file cannot be read, parsed, or validated
    """
    try:
        with open(config_file, "r") as f:
            config_dict = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {config_file}",
            suggestions=[f"Ensure {config_file} exists and is readable"],
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e

    if not config_dict:
        return AppConfig()

    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping at the top level",
            suggestions=["Review config.example.yaml for the expected layout"],
        )

    warning_messages = check_for_warnings(config_dict)
    if warning_messages:
        emit_warnings(warning_messages)

    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            if error["type"] == "missing":
                errors.append(f"Missing required field: {field_path}")
            elif field_path:
                errors.append(f"{field_path}: {error['msg']}")
            else:
                errors.append(error["msg"])

        raise ConfigurationError(
            "Configuration validation failed",
            errors=errors,
            suggestions=[
                "Review config.example.yaml for correct format",
                "Verify field types match the expected schema",
            ],
        ) from e


def _find_config_file(
    config_path: Optional[Path], allow_missing: bool
) -> Optional[Path]:
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[f"Ensure {config_path} exists", "Check the path and try again"],
            )
        return config_path

    for candidate in DEFAULT_CANDIDATES:
        if candidate.exists():
            return candidate

    if allow_missing:
        return None

    raise ConfigurationError(
        "Configuration file not found",
        errors=[f"Tried: {candidate}" for candidate in DEFAULT_CANDIDATES],
        suggestions=[
            "Copy config.example.yaml to config.yaml",
            "Use --config to specify a custom location",
        ],
    )
