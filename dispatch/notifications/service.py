"""Notification engine: turns a domain event into delivered, logged emails.

This module provides the NotificationEngine that orchestrates the dispatch
pipeline for one triggering event:

1. Load the organization's EmailSettings (skip if disabled or unconfigured)
2. Find matching rules, lowest priority value first
3. Per rule: resolve recipients, render the template once, then per recipient
   check preferences, reserve rate-limit capacity, and send
4. Record every attempt as an EmailDeliveryLog moving through
   queued -> sending -> sent | failed
5. Bump the rule's execution statistics once per processed rule

Each step opens its own short transaction through ``session_scope`` so no
database lock is held while a provider call is in flight.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy.orm import Session

from dispatch.domain.models import (
    DeliveryError,
    DeliveryStatus,
    EmailDeliveryLog,
    EmailSettings,
    NotificationEvent,
    NotificationRule,
    RecipientAddress,
    RenderedEmail,
    StatusHistoryEntry,
)
from dispatch.logging import get_logger
from dispatch.logging.context import log_context
from dispatch.matching.engine import RuleMatcher
from dispatch.persistence.database import get_session
from dispatch.persistence.repositories import (
    DeliveryLogRepository,
    EmailSettingsRepository,
    PreferenceRepository,
    RuleRepository,
    UserRepository,
)
from dispatch.providers.base import DeliveryProvider
from dispatch.providers.exceptions import ProviderError
from dispatch.ratelimit.limiter import RateLimiter
from dispatch.recipients.resolver import RecipientResolver
from dispatch.utils.timestamps import utc_now

from .models import RuleResult
from .preferences import should_send
from .templates import TemplateRenderer

logger = get_logger(__name__, component="engine")

ProviderFactoryFn = Callable[[EmailSettings], DeliveryProvider]

UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"


class NotificationEngine:
    """Orchestrates rule matching, recipient resolution and delivery.

    ``trigger_notification`` is the fire-and-forget entry point for event
    producers and never raises. ``process_trigger`` runs the same pipeline but
    lets persistence failures surface and returns per-rule results.
    """

    def __init__(
        self,
        provider_factory: ProviderFactoryFn,
        rate_limiter: Optional[RateLimiter] = None,
        renderer: Optional[TemplateRenderer] = None,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
        max_retries: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the engine.

        Args:
            provider_factory: Builds the organization's provider from its settings
            rate_limiter: Rate limiter (creates default if None)
            renderer: Template renderer (creates default if None)
            session_scope: Context manager factory yielding a transactional session
            max_retries: Retry budget stamped on every new delivery log
            clock: Source of the current UTC time (injectable for tests)
        """
        self.provider_factory = provider_factory
        self.session_scope = session_scope
        self.rate_limiter = rate_limiter or RateLimiter(session_scope=session_scope, clock=clock)
        self.renderer = renderer or TemplateRenderer(session_scope=session_scope, clock=clock)
        self.max_retries = max_retries
        self.clock = clock

    def trigger_notification(
        self,
        org_id: str,
        event: Union[NotificationEvent, str],
        payload: Mapping[str, Any],
        triggered_by: Optional[str] = None,
    ) -> None:
        """Process an event and swallow every failure after logging it.

        Notification delivery must never fail the business operation that
        raised the event; outcomes are visible only through delivery logs.
        """
        event_name = event.value if isinstance(event, NotificationEvent) else str(event)

        with log_context(org_id=org_id, trigger_event=event_name):
            try:
                self.process_trigger(org_id, NotificationEvent(event), payload, triggered_by)
            except Exception as e:
                logger.error(
                    f"Notification trigger failed: {e}",
                    extra={"event": "notification.trigger.error"},
                    exc_info=True,
                )

    def process_trigger(
        self,
        org_id: str,
        event: NotificationEvent,
        payload: Mapping[str, Any],
        triggered_by: Optional[str] = None,
    ) -> List[RuleResult]:
        """Run the pipeline for one event.

        A failure while processing one rule is logged and the remaining rules
        still run.

        Returns:
            One RuleResult per rule that completed

        Raises:
            PersistenceError: If settings or rules cannot be loaded
        """
        with self.session_scope() as session:
            settings = EmailSettingsRepository(session).get(org_id)

        if settings is None or not settings.is_active:
            logger.info(
                f"Email notifications not enabled for org {org_id}",
                extra={"event": "notification.trigger.skipped", "reason": "settings_inactive"},
            )
            return []

        with self.session_scope() as session:
            rules = RuleMatcher(RuleRepository(session)).find_matching_rules(org_id, event, payload)

        if not rules:
            logger.info(
                f"No matching rules for event {event.value}",
                extra={"event": "notification.trigger.skipped", "reason": "no_matching_rules"},
            )
            return []

        provider = self._build_provider(settings)

        results = []
        for rule in rules:
            with log_context(rule_id=rule.id):
                try:
                    results.append(
                        self.process_rule(org_id, rule, payload, settings, provider, triggered_by)
                    )
                except Exception as e:
                    logger.error(
                        f"Error processing rule {rule.id}: {e}",
                        extra={"event": "notification.rule.error"},
                        exc_info=True,
                    )

        return results

    def process_rule(
        self,
        org_id: str,
        rule: NotificationRule,
        payload: Mapping[str, Any],
        settings: EmailSettings,
        provider: Optional[DeliveryProvider] = None,
        triggered_by: Optional[str] = None,
    ) -> RuleResult:
        """Deliver one matched rule to its recipients.

        Preference-suppressed recipients are skipped; an exhausted rate limit
        stops the remaining recipients. A failed send is recorded and the loop
        moves on to the next recipient.

        Raises:
            TemplateRenderError: If the rule's template is missing, inactive, or broken
            PersistenceError: If recipients or statistics cannot be read or written
        """
        logger.info(
            f"Processing rule '{rule.name or rule.id}'",
            extra={"event": "notification.rule.matched", "priority": rule.priority},
        )

        with self.session_scope() as session:
            recipients = RecipientResolver(UserRepository(session)).resolve_recipients(
                org_id, rule, payload, triggered_by
            )

        result = RuleResult(rule_id=rule.id, recipients=len(recipients))
        if not recipients:
            logger.info(
                f"No recipients for rule {rule.id}",
                extra={"event": "notification.rule.no_recipients"},
            )
            return result

        rendered = self.renderer.render_template(rule.template_id, org_id, dict(payload))
        related_entity = payload.get("relatedEntity")

        for recipient in recipients:
            try:
                if not self._wants_email(org_id, recipient, rule.event):
                    result.suppressed += 1
                    logger.info(
                        f"Recipient {recipient.email} has disabled notifications for {rule.event.value}",
                        extra={"event": "notification.recipient.suppressed"},
                    )
                    continue

                status = self.rate_limiter.reserve(org_id)
                if not status.can_send:
                    result.rate_limited = True
                    logger.warning(
                        f"Rate limit exceeded for org {org_id}; stopping rule {rule.id}",
                        extra={
                            "event": "notification.rate_limit.exceeded",
                            "hourly_remaining": status.hourly_remaining,
                            "daily_remaining": status.daily_remaining,
                        },
                    )
                    break

                log = self.queue_delivery(
                    org_id=org_id,
                    settings=settings,
                    to=recipient.email,
                    rendered=rendered,
                    event=rule.event,
                    rule_id=rule.id,
                    template_id=rule.template_id,
                    recipient_user_id=recipient.user_id,
                    related_entity=related_entity,
                )
                result.log_ids.append(log.id)
                self.deliver(log, settings, provider)
                result.sent += 1

            except ProviderError as e:
                result.failed += 1
                logger.warning(
                    f"Delivery to {recipient.email} failed: {e.message}",
                    extra={"event": "notification.send.failure", "error_code": e.code},
                )
            except Exception as e:
                result.failed += 1
                logger.error(
                    f"Error sending email to {recipient.email}: {e}",
                    extra={"event": "notification.send.error"},
                    exc_info=True,
                )

        with self.session_scope() as session:
            RuleRepository(session).record_execution(rule.id, self.clock(), succeeded=True)

        logger.info(
            f"Rule {rule.id} processed: {result.sent} sent, {result.failed} failed, "
            f"{result.suppressed} suppressed",
            extra={"event": "notification.rule.completed"},
        )
        return result

    def send_email(
        self,
        org_id: str,
        settings: EmailSettings,
        to: str,
        rendered: RenderedEmail,
        event: NotificationEvent,
        provider: Optional[DeliveryProvider] = None,
        **log_fields: Any,
    ) -> EmailDeliveryLog:
        """Queue a delivery log and drive it to a terminal state.

        Returns:
            The log in ``sent`` state

        Raises:
            ProviderError: After the log has been marked ``failed``
        """
        log = self.queue_delivery(org_id, settings, to, rendered, event, **log_fields)
        return self.deliver(log, settings, provider)

    def queue_delivery(
        self,
        org_id: str,
        settings: EmailSettings,
        to: Union[str, Sequence[str]],
        rendered: RenderedEmail,
        event: NotificationEvent,
        rule_id: Optional[str] = None,
        template_id: Optional[str] = None,
        recipient_user_id: Optional[str] = None,
        related_entity: Optional[Dict[str, Any]] = None,
        parent_log_id: Optional[str] = None,
        retry_count: int = 0,
        history_message: Optional[str] = None,
        cc: Optional[Sequence[str]] = None,
        bcc: Optional[Sequence[str]] = None,
        max_retries: Optional[int] = None,
    ) -> EmailDeliveryLog:
        """Persist a new delivery log in ``queued`` state."""
        now = self.clock()
        log = EmailDeliveryLog(
            org_id=org_id,
            to=[to] if isinstance(to, str) else list(to),
            cc=list(cc or []),
            bcc=list(bcc or []),
            from_address=settings.sender,
            reply_to=settings.reply_to_email,
            subject=rendered.subject,
            html_body=rendered.html_body,
            text_body=rendered.text_body,
            event=event,
            rule_id=rule_id,
            template_id=template_id,
            recipient_user_id=recipient_user_id,
            related_entity=related_entity,
            status=DeliveryStatus.QUEUED,
            status_history=[
                StatusHistoryEntry(status=DeliveryStatus.QUEUED, timestamp=now, message=history_message)
            ],
            retry_count=retry_count,
            max_retries=self.max_retries if max_retries is None else max_retries,
            parent_log_id=parent_log_id,
            queued_at=now,
        )

        with self.session_scope() as session:
            return DeliveryLogRepository(session).create(log)

    def deliver(
        self,
        log: EmailDeliveryLog,
        settings: EmailSettings,
        provider: Optional[DeliveryProvider] = None,
    ) -> EmailDeliveryLog:
        """Move a queued log through ``sending`` to ``sent`` or ``failed``.

        The provider is built from ``settings`` when none is passed, so a
        configuration problem is recorded on the log like any other failure.

        Raises:
            ProviderError: After the log has been marked ``failed``
        """
        with log_context(delivery_id=log.id):
            with self.session_scope() as session:
                DeliveryLogRepository(session).transition(log.id, DeliveryStatus.SENDING, at=self.clock())

            try:
                active = provider if provider is not None else self.provider_factory(settings)
                sent = active.send(
                    to=log.to,
                    subject=log.subject,
                    html_body=log.html_body,
                    text_body=log.text_body,
                    cc=log.cc or None,
                    bcc=log.bcc or None,
                    reply_to=log.reply_to,
                )
            except Exception as e:
                try:
                    self._mark_failed(log.id, e)
                except Exception:
                    logger.error(
                        f"Could not record failure of delivery {log.id}: {e}",
                        extra={"event": "notification.send.record_failed"},
                        exc_info=True,
                    )
                raise

            with self.session_scope() as session:
                updated = DeliveryLogRepository(session).transition(
                    log.id,
                    DeliveryStatus.SENT,
                    message="Email sent successfully",
                    provider_message_id=sent.message_id,
                    provider_response=sent.provider_response,
                    at=self.clock(),
                )

            logger.info(
                f"Email sent to {', '.join(log.to)}",
                extra={"event": "notification.send.success", "message_id": sent.message_id},
            )
            return updated

    def _mark_failed(self, log_id: str, error: Exception) -> None:
        if isinstance(error, ProviderError):
            message, code = error.message, error.code
        else:
            message, code = str(error) or type(error).__name__, UNKNOWN_ERROR_CODE

        now = self.clock()
        with self.session_scope() as session:
            DeliveryLogRepository(session).transition(
                log_id,
                DeliveryStatus.FAILED,
                message=message,
                error=DeliveryError(message=message, code=code, timestamp=now),
                at=now,
            )

    def _wants_email(self, org_id: str, recipient: RecipientAddress, event: NotificationEvent) -> bool:
        if recipient.is_external:
            return True
        with self.session_scope() as session:
            preferences = PreferenceRepository(session).get(recipient.user_id, org_id)
        return should_send(preferences, event, now=self.clock())

    def _build_provider(self, settings: EmailSettings) -> Optional[DeliveryProvider]:
        try:
            return self.provider_factory(settings)
        except ProviderError as e:
            # Each delivery retries the build and records the failure on its log
            logger.error(
                f"Cannot build delivery provider: {e.message}",
                extra={"event": "notification.provider.unavailable", "error_code": e.code},
            )
            return None
