"""Resending failed deliveries.

A retry never touches the failed log's status or history. It creates a fresh
delivery log (``parent_log_id`` pointing at the failed one, ``retry_count`` one
higher) that goes through the normal queued -> sending -> sent | failed path,
and it increments the failed log's ``retry_count``. Each failed log can be
retried at most once; a failed retry is itself the next candidate.
"""

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dispatch.domain.models import EmailDeliveryLog, RenderedEmail
from dispatch.logging import get_logger
from dispatch.logging.context import log_context
from dispatch.persistence.exceptions import RecordNotFoundError
from dispatch.persistence.repositories import DeliveryLogRepository, EmailSettingsRepository
from dispatch.providers.exceptions import ProviderError

from .models import RateLimitExceeded, RetryNotAllowed, SettingsNotConfigured
from .service import NotificationEngine

logger = get_logger(__name__, component="retry")


@dataclass
class RetrySweepResult:
    """Counts from one ``retry_failed`` sweep."""

    candidates: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class DeliveryRetryService:
    """Creates retry attempts for failed delivery logs."""

    def __init__(
        self,
        engine: NotificationEngine,
        session_scope: Optional[Callable[[], AbstractContextManager[Session]]] = None,
    ):
        """Initialize the retry service.

        Args:
            engine: Engine whose rate limiter, provider factory and state machine are reused
            session_scope: Session factory (defaults to the engine's)
        """
        self.engine = engine
        self.session_scope = session_scope or engine.session_scope

    def resend(self, org_id: str, log_id: str) -> EmailDeliveryLog:
        """Retry one failed delivery.

        Returns:
            The new delivery log in ``sent`` state

        Raises:
            RecordNotFoundError: If the log does not exist in this organization
            RetryNotAllowed: If the log is not failed, has no budget, or was already retried
            SettingsNotConfigured: If the organization's settings are missing or inactive
            RateLimitExceeded: If the organization has no remaining capacity
            ProviderError: If the new attempt fails (it is recorded as ``failed``)
        """
        with log_context(org_id=org_id, retry_of=log_id):
            with self.session_scope() as session:
                logs = DeliveryLogRepository(session)
                original = logs.get(log_id)
                if original is None or original.org_id != org_id:
                    raise RecordNotFoundError(f"Delivery log {log_id} not found")
                if not original.can_retry:
                    raise RetryNotAllowed(
                        f"Delivery log {log_id} cannot be retried "
                        f"(status={original.status.value}, retries={original.retry_count}/{original.max_retries})"
                    )
                if logs.has_retry(log_id):
                    raise RetryNotAllowed(f"Delivery log {log_id} has already been retried")

                settings = EmailSettingsRepository(session).get(org_id)

            if settings is None or not settings.is_active:
                raise SettingsNotConfigured(f"Email notifications not enabled for org {org_id}")

            status = self.engine.rate_limiter.reserve(org_id)
            if not status.can_send:
                logger.warning(
                    f"Rate limit exceeded for org {org_id}; retry of {log_id} deferred",
                    extra={"event": "delivery.retry.rate_limited"},
                )
                raise RateLimitExceeded(f"Rate limit exceeded for org {org_id}")

            with self.session_scope() as session:
                DeliveryLogRepository(session).increment_retry_count(log_id)

            retry = self.engine.queue_delivery(
                org_id=org_id,
                settings=settings,
                to=original.to,
                cc=original.cc,
                bcc=original.bcc,
                rendered=RenderedEmail(
                    subject=original.subject,
                    html_body=original.html_body,
                    text_body=original.text_body,
                ),
                event=original.event,
                rule_id=original.rule_id,
                template_id=original.template_id,
                recipient_user_id=original.recipient_user_id,
                related_entity=original.related_entity,
                parent_log_id=original.id,
                retry_count=original.retry_count + 1,
                max_retries=original.max_retries,
                history_message=f"Retry of {original.id}",
            )

            logger.info(
                f"Retrying delivery {log_id} as {retry.id} (attempt {retry.retry_count})",
                extra={"event": "delivery.retry.queued"},
            )
            return self.engine.deliver(retry, settings)

    def retry_failed(self, org_id: Optional[str] = None, limit: int = 50) -> RetrySweepResult:
        """Retry up to ``limit`` eligible failed logs, oldest first.

        Never raises for individual logs; each outcome is counted.
        """
        with self.session_scope() as session:
            candidates = DeliveryLogRepository(session).find_retryable(limit, org_id=org_id)

        result = RetrySweepResult(candidates=len(candidates))
        for log in candidates:
            try:
                self.resend(log.org_id, log.id)
                result.sent += 1
            except (RetryNotAllowed, SettingsNotConfigured, RateLimitExceeded) as e:
                result.skipped += 1
                logger.info(
                    f"Skipped retry of {log.id}: {e}",
                    extra={"event": "delivery.retry.skipped"},
                )
            except ProviderError as e:
                result.failed += 1
                logger.warning(
                    f"Retry of {log.id} failed: {e.message}",
                    extra={"event": "delivery.retry.failed", "error_code": e.code},
                )
            except Exception as e:
                result.failed += 1
                logger.error(
                    f"Unexpected error retrying {log.id}: {e}",
                    extra={"event": "delivery.retry.error"},
                    exc_info=True,
                )

        logger.info(
            f"Retry sweep finished: {result.sent} sent, {result.failed} failed, {result.skipped} skipped",
            extra={
                "event": "delivery.retry.completed",
                "candidates": result.candidates,
            },
        )
        return result
