"""Command-line entry point for the notification dispatch engine."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dispatch.config.environment import EnvironmentConfig
from dispatch.config.exceptions import ConfigurationError
from dispatch.config.loader import load_config
from dispatch.config.models import AppConfig
from dispatch.domain.models import NotificationEvent
from dispatch.logging import get_logger
from dispatch.logging.config import configure_logging
from dispatch.notifications.retry import DeliveryRetryService
from dispatch.notifications.service import NotificationEngine
from dispatch.notifications.settings_service import EmailSettingsService
from dispatch.notifications.template_service import TemplateService
from dispatch.persistence.database import close_database, init_database
from dispatch.persistence.exceptions import PersistenceError
from dispatch.providers.factory import ProviderFactory
from dispatch.scheduler import RetrySchedulerService

logger = get_logger(__name__, component="cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


class UsageError(Exception):
    """Raised for bad command arguments that argparse cannot catch."""

    pass


@dataclass
class Services:
    """Service singletons shared by the subcommands."""

    engine: NotificationEngine
    settings: EmailSettingsService
    templates: TemplateService
    retry: DeliveryRetryService


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > environment > config file > INFO.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        pass
    elif app_config.logging and app_config.logging.level:
        env_config.log_level = app_config.logging.level
    else:
        env_config.log_level = "INFO"

    return app_config, env_config


def build_services(app_config: AppConfig, env_config: EnvironmentConfig) -> Services:
    """Wire the engine and management services from configuration."""
    provider_factory = ProviderFactory(
        env_config, timeout=app_config.delivery.provider_timeout_seconds
    )
    engine = NotificationEngine(
        provider_factory=provider_factory,
        max_retries=app_config.delivery.max_retries,
    )
    return Services(
        engine=engine,
        settings=EmailSettingsService(
            env_config,
            rate_limits=app_config.rate_limits,
            provider_factory=provider_factory,
        ),
        templates=TemplateService(renderer=engine.renderer),
        retry=DeliveryRetryService(engine),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notification-dispatch",
        description="Notification Dispatch Engine - rule-driven email notifications per organization",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    trigger = subparsers.add_parser("trigger", help="Process one event synchronously")
    trigger.add_argument("--org", required=True, help="Organization id")
    trigger.add_argument("--event", required=True, help="Event name (e.g. ticket.created)")
    trigger.add_argument("--payload", required=True, type=Path, help="JSON payload file")
    trigger.add_argument("--triggered-by", default=None, help="Acting user id")

    test_conn = subparsers.add_parser("test-connection", help="Send the configuration test email")
    test_conn.add_argument("--org", required=True, help="Organization id")
    test_conn.add_argument("--to", required=True, help="Address that receives the test email")

    validate_conn = subparsers.add_parser(
        "validate-connection", help="Check provider credentials without sending"
    )
    validate_conn.add_argument("--org", required=True, help="Organization id")

    seed = subparsers.add_parser("seed-templates", help="Install the built-in templates")
    seed.add_argument("--org", required=True, help="Organization id")

    retry = subparsers.add_parser("retry-failed", help="Retry eligible failed deliveries once")
    retry.add_argument("--org", default=None, help="Limit the sweep to one organization")
    retry.add_argument("--limit", type=int, default=None, help="Maximum logs to retry")

    subparsers.add_parser(
        "run-retry-scheduler", help="Run the retry sweep on the configured interval"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 success, 1 configuration/persistence failure, 2 usage error)
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_OK

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Notification dispatch starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "log_level": env_config.log_level,
            },
        )

        init_database(env_config.database_url)

        try:
            if args.command == "init-db":
                print("Database initialized")
                return EXIT_OK

            services = build_services(app_config, env_config)
            handler = COMMANDS[args.command]
            return handler(args, services, app_config)
        finally:
            close_database()

    except UsageError as e:
        print(f"Usage error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e.message}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return EXIT_ERROR
    except PersistenceError as e:
        print(f"Database Error: {e}", file=sys.stderr)
        logger.error(
            f"Persistence error: {e}",
            extra={"event": "database.error", "error_type": type(e).__name__},
        )
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return EXIT_OK
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return EXIT_ERROR


def _cmd_trigger(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    try:
        event = NotificationEvent(args.event)
    except ValueError as e:
        raise UsageError(f"Unknown event: {args.event}") from e

    payload = _read_payload(args.payload)
    results = services.engine.process_trigger(args.org, event, payload, args.triggered_by)

    for result in results:
        print(
            f"rule {result.rule_id}: {result.recipients} recipients, {result.sent} sent, "
            f"{result.failed} failed, {result.suppressed} suppressed"
            + (" (rate limited)" if result.rate_limited else "")
        )
    if not results:
        print("No notifications sent")
    return EXIT_OK


def _cmd_test_connection(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    result = services.settings.test_settings(args.org, args.to)
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK if result.success else EXIT_ERROR


def _cmd_validate_connection(
    args: argparse.Namespace, services: Services, app_config: AppConfig
) -> int:
    result = services.settings.validate_settings(args.org)
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK if result.success else EXIT_ERROR


def _cmd_seed_templates(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    created = services.templates.seed_default_templates(args.org)
    print(f"Seeded {created} templates for org {args.org}")
    return EXIT_OK


def _cmd_retry_failed(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    limit = args.limit if args.limit is not None else app_config.retry.batch_size
    if limit < 1:
        raise UsageError("--limit must be at least 1")

    result = services.retry.retry_failed(org_id=args.org, limit=limit)
    print(
        f"Retried {result.candidates} deliveries: {result.sent} sent, "
        f"{result.failed} failed, {result.skipped} skipped"
    )
    return EXIT_OK


def _cmd_run_retry_scheduler(
    args: argparse.Namespace, services: Services, app_config: AppConfig
) -> int:
    if not app_config.retry.enabled:
        raise ConfigurationError(
            "Retry scheduler is disabled",
            suggestions=["Set retry.enabled: true in config.yaml"],
        )

    start_time = time.time()
    shutdown_event = threading.Event()
    batch_size = app_config.retry.batch_size

    scheduler_service = RetrySchedulerService(
        retry_callable=lambda: services.retry.retry_failed(limit=batch_size),
        interval_seconds=app_config.retry.interval_seconds,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info(
        "Retry scheduler running. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )
        scheduler_service.shutdown(wait=False)

    logger.info(
        "Notification dispatch stopped",
        extra={
            "event": "service.stopping",
            "uptime_seconds": round(time.time() - start_time, 2),
        },
    )
    return EXIT_OK


def _read_payload(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            payload = json.load(f)
    except FileNotFoundError as e:
        raise UsageError(f"Payload file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise UsageError(f"Payload file is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise UsageError("Payload must be a JSON object")
    return payload


COMMANDS = {
    "trigger": _cmd_trigger,
    "test-connection": _cmd_test_connection,
    "validate-connection": _cmd_validate_connection,
    "seed-templates": _cmd_seed_templates,
    "retry-failed": _cmd_retry_failed,
    "run-retry-scheduler": _cmd_run_retry_scheduler,
}


if __name__ == "__main__":
    sys.exit(main())
