"""Data access layer (repositories) for persistence operations.

Repositories encapsulate database operations for settings, rules, templates,
users, preferences and delivery logs, and return domain models rather than
ORM models. Counter updates are issued as single ``col = col + n`` statements
so concurrent writers never lose increments.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from dispatch.domain.models import (
    ALLOWED_TRANSITIONS,
    DeliveryError,
    DeliveryStatus,
    EmailDeliveryLog,
    EmailSettings,
    NotificationEvent,
    NotificationRule,
    NotificationTemplate,
    StatusHistoryEntry,
    User,
    UserNotificationPreferences,
)
from dispatch.utils.timestamps import format_timestamp, utc_now

from .exceptions import (
    DataIntegrityError,
    InvalidStatusTransitionError,
    PersistenceError,
    RecordNotFoundError,
)
from .schema import (
    DeliveryLogModel,
    EmailSettingsModel,
    NotificationRuleModel,
    NotificationTemplateModel,
    UserModel,
    UserPreferencesModel,
    _enum_value,
)

logger = logging.getLogger(__name__)


class EmailSettingsRepository:
    """Repository for per-organization email settings and rate-limit state."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, org_id: str) -> Optional[EmailSettings]:
        """Retrieve settings for an organization.

        Returns:
            EmailSettings if found, None otherwise

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self._get_model(org_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving settings for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve email settings: {e}") from e

    def upsert(self, settings: EmailSettings) -> EmailSettings:
        """Insert settings or overwrite the organization's existing row.

        Raises:
            DataIntegrityError: On constraint violation
            PersistenceError: If database error occurs
        """
        try:
            existing = self._get_model(settings.org_id)
            if existing:
                existing.apply(settings)
                self.session.flush()
                return existing.to_domain()

            model = EmailSettingsModel.from_domain(settings)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error saving settings for org {settings.org_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to save email settings due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving settings for org {settings.org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save email settings: {e}") from e

    def set_enabled(self, org_id: str, enabled: bool) -> None:
        """Toggle sending for an organization.

        Raises:
            RecordNotFoundError: If the organization has no settings
        """
        self._update(org_id, is_enabled=enabled, updated_at=format_timestamp(utc_now()))

    def record_test_result(self, org_id: str, tested_at: datetime, result: dict) -> None:
        self._update(
            org_id,
            last_tested_at=format_timestamp(tested_at),
            last_test_result=result,
            updated_at=format_timestamp(tested_at),
        )

    def reset_hour_window(self, org_id: str, now: datetime) -> None:
        """Zero the hourly counter and move its window start to ``now``."""
        self._update(org_id, current_hour_count=0, last_reset_hour=format_timestamp(now))

    def reset_day_window(self, org_id: str, now: datetime) -> None:
        """Zero the daily counter and move its window start to ``now``."""
        self._update(org_id, current_day_count=0, last_reset_day=format_timestamp(now))

    def increment_counts(self, org_id: str, count: int = 1) -> None:
        """Add ``count`` to both rate-limit counters in one UPDATE.

        Raises:
            ValueError: If count is negative
            RecordNotFoundError: If the organization has no settings
        """
        if count < 0:
            raise ValueError("Rate-limit increments must be non-negative")

        self._update(
            org_id,
            current_hour_count=EmailSettingsModel.current_hour_count + count,
            current_day_count=EmailSettingsModel.current_day_count + count,
        )

    def delete(self, org_id: str) -> bool:
        """Delete an organization's settings. Returns True if a row was removed."""
        try:
            result = self.session.execute(
                delete(EmailSettingsModel).where(EmailSettingsModel.org_id == org_id)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting settings for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete email settings: {e}") from e

    def _get_model(self, org_id: str) -> Optional[EmailSettingsModel]:
        stmt = select(EmailSettingsModel).where(EmailSettingsModel.org_id == org_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def _update(self, org_id: str, **values) -> None:
        try:
            result = self.session.execute(
                update(EmailSettingsModel)
                .where(EmailSettingsModel.org_id == org_id)
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            self.session.flush()

            if result.rowcount == 0:
                raise RecordNotFoundError(f"Email settings for org {org_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating settings for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update email settings: {e}") from e


class RuleRepository:
    """Repository for notification rules."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, rule_id: str) -> Optional[NotificationRule]:
        try:
            model = self.session.get(NotificationRuleModel, rule_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve rule: {e}") from e

    def find_enabled(self, org_id: str, event: NotificationEvent) -> List[NotificationRule]:
        """Enabled rules for (organization, event), lowest priority value first.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(NotificationRuleModel)
                .where(
                    NotificationRuleModel.org_id == org_id,
                    NotificationRuleModel.event == _enum_value(event),
                    NotificationRuleModel.is_enabled.is_(True),
                )
                .order_by(NotificationRuleModel.priority.asc(), NotificationRuleModel.created_at.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving rules for org {org_id} event {event}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve rules: {e}") from e

    def list_for_org(self, org_id: str) -> List[NotificationRule]:
        try:
            stmt = (
                select(NotificationRuleModel)
                .where(NotificationRuleModel.org_id == org_id)
                .order_by(NotificationRuleModel.priority.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing rules for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list rules: {e}") from e

    def save(self, rule: NotificationRule) -> NotificationRule:
        """Insert a rule or overwrite an existing one with the same id."""
        try:
            existing = self.session.get(NotificationRuleModel, rule.id)
            if existing:
                existing.apply(rule)
                self.session.flush()
                return existing.to_domain()

            model = NotificationRuleModel.from_domain(rule)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error saving rule {rule.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to save rule due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving rule {rule.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save rule: {e}") from e

    def delete(self, rule_id: str) -> bool:
        try:
            result = self.session.execute(
                delete(NotificationRuleModel).where(NotificationRuleModel.id == rule_id)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete rule: {e}") from e

    def record_execution(self, rule_id: str, executed_at: datetime, succeeded: bool = True) -> None:
        """Bump execution statistics once for a finished rule run.

        Raises:
            RecordNotFoundError: If the rule no longer exists
            PersistenceError: If database error occurs
        """
        values = {
            "execution_count": NotificationRuleModel.execution_count + 1,
            "last_executed_at": format_timestamp(executed_at),
        }
        if succeeded:
            values["success_count"] = NotificationRuleModel.success_count + 1
        else:
            values["failure_count"] = NotificationRuleModel.failure_count + 1

        try:
            result = self.session.execute(
                update(NotificationRuleModel)
                .where(NotificationRuleModel.id == rule_id)
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            self.session.flush()

            if result.rowcount == 0:
                raise RecordNotFoundError(f"Rule {rule_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error recording execution for rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record rule execution: {e}") from e


class TemplateRepository:
    """Repository for notification templates."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, template_id: str, org_id: Optional[str] = None) -> Optional[NotificationTemplate]:
        """Retrieve a template by id, optionally scoped to an organization."""
        try:
            model = self.session.get(NotificationTemplateModel, template_id)
            if model is None or (org_id is not None and model.org_id != org_id):
                return None
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving template {template_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve template: {e}") from e

    def list_for_org(
        self,
        org_id: str,
        event: Optional[NotificationEvent] = None,
        is_active: Optional[bool] = None,
        is_system: Optional[bool] = None,
    ) -> List[NotificationTemplate]:
        try:
            stmt = select(NotificationTemplateModel).where(NotificationTemplateModel.org_id == org_id)
            if event is not None:
                stmt = stmt.where(NotificationTemplateModel.event == _enum_value(event))
            if is_active is not None:
                stmt = stmt.where(NotificationTemplateModel.is_active.is_(is_active))
            if is_system is not None:
                stmt = stmt.where(NotificationTemplateModel.is_system.is_(is_system))
            stmt = stmt.order_by(NotificationTemplateModel.name.asc())

            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing templates for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list templates: {e}") from e

    def count_for_org(self, org_id: str) -> int:
        try:
            stmt = select(func.count()).select_from(NotificationTemplateModel).where(
                NotificationTemplateModel.org_id == org_id
            )
            return self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting templates for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count templates: {e}") from e

    def save(self, template: NotificationTemplate) -> NotificationTemplate:
        """Insert a template or overwrite an existing one with the same id."""
        try:
            existing = self.session.get(NotificationTemplateModel, template.id)
            if existing:
                existing.apply(template)
                self.session.flush()
                return existing.to_domain()

            model = NotificationTemplateModel.from_domain(template)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error saving template {template.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to save template due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving template {template.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save template: {e}") from e

    def delete(self, template_id: str) -> bool:
        try:
            result = self.session.execute(
                delete(NotificationTemplateModel).where(NotificationTemplateModel.id == template_id)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting template {template_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete template: {e}") from e

    def record_usage(self, template_id: str, used_at: datetime) -> None:
        """Increment usage_count and stamp last_used_at.

        Raises:
            RecordNotFoundError: If the template no longer exists
        """
        try:
            result = self.session.execute(
                update(NotificationTemplateModel)
                .where(NotificationTemplateModel.id == template_id)
                .values(
                    usage_count=NotificationTemplateModel.usage_count + 1,
                    last_used_at=format_timestamp(used_at),
                )
                .execution_options(synchronize_session="fetch")
            )
            self.session.flush()

            if result.rowcount == 0:
                raise RecordNotFoundError(f"Template {template_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error recording usage for template {template_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record template usage: {e}") from e


class UserRepository:
    """Repository for organization users."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[User]:
        try:
            model = self.session.get(UserModel, user_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user: {e}") from e

    def get_active_by_ids(self, org_id: str, user_ids: Iterable[str]) -> List[User]:
        """Active users of the organization whose id is in ``user_ids``."""
        ids = list(user_ids)
        if not ids:
            return []

        try:
            stmt = select(UserModel).where(
                UserModel.org_id == org_id,
                UserModel.id.in_(ids),
                UserModel.is_active.is_(True),
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving users for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve users: {e}") from e

    def get_active_by_roles(self, org_id: str, role_ids: Iterable[str]) -> List[User]:
        """Active users of the organization holding any of ``role_ids``."""
        roles = list(role_ids)
        if not roles:
            return []

        try:
            stmt = select(UserModel).where(
                UserModel.org_id == org_id,
                UserModel.role_id.in_(roles),
                UserModel.is_active.is_(True),
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving users by role for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve users by role: {e}") from e

    def save(self, user: User) -> User:
        try:
            existing = self.session.get(UserModel, user.id)
            if existing:
                existing.org_id = user.org_id
                existing.email = user.email
                existing.name = user.name
                existing.role_id = user.role_id
                existing.is_active = user.is_active
                self.session.flush()
                return existing.to_domain()

            model = UserModel.from_domain(user)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error saving user {user.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to save user due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving user {user.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save user: {e}") from e


class PreferenceRepository:
    """Repository for per (user, organization) notification preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str, org_id: str) -> Optional[UserNotificationPreferences]:
        try:
            model = self.session.get(UserPreferencesModel, (user_id, org_id))
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving preferences for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve preferences: {e}") from e

    def get_or_create_default(self, user_id: str, org_id: str) -> UserNotificationPreferences:
        """Return stored preferences, creating opt-in defaults if none exist."""
        existing = self.get(user_id, org_id)
        if existing is not None:
            return existing

        return self.save(UserNotificationPreferences(user_id=user_id, org_id=org_id))

    def save(self, prefs: UserNotificationPreferences) -> UserNotificationPreferences:
        try:
            existing = self.session.get(UserPreferencesModel, (prefs.user_id, prefs.org_id))
            if existing:
                existing.apply(prefs)
                self.session.flush()
                return existing.to_domain()

            model = UserPreferencesModel.from_domain(prefs)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error saving preferences for user {prefs.user_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to save preferences due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving preferences for user {prefs.user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save preferences: {e}") from e


class DeliveryLogRepository:
    """Repository for email delivery logs and their status transitions."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, log: EmailDeliveryLog) -> EmailDeliveryLog:
        """Insert a new log; it must be in ``queued`` state.

        Raises:
            InvalidStatusTransitionError: If the log is not queued
            DataIntegrityError: If the id already exists
            PersistenceError: If database error occurs
        """
        if DeliveryStatus(log.status) != DeliveryStatus.QUEUED:
            raise InvalidStatusTransitionError(log.id, "new", _enum_value(log.status))

        try:
            model = DeliveryLogModel.from_domain(log)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error creating delivery log {log.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to create delivery log due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating delivery log {log.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create delivery log: {e}") from e

    def get(self, log_id: str) -> Optional[EmailDeliveryLog]:
        try:
            model = self.session.get(DeliveryLogModel, log_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving delivery log {log_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve delivery log: {e}") from e

    def transition(
        self,
        log_id: str,
        status: DeliveryStatus,
        message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
        provider_response: Optional[dict] = None,
        error: Optional[DeliveryError] = None,
        at: Optional[datetime] = None,
    ) -> EmailDeliveryLog:
        """Move a log to ``status`` and append a history entry.

        Only queued -> sending and sending -> sent|failed are accepted; terminal
        logs never change again.

        Raises:
            RecordNotFoundError: If the log does not exist
            InvalidStatusTransitionError: If the move is not allowed
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(DeliveryLogModel, log_id)
            if model is None:
                raise RecordNotFoundError(f"Delivery log {log_id} not found")

            current = DeliveryStatus(model.status)
            target = DeliveryStatus(status)
            if target not in ALLOWED_TRANSITIONS[current]:
                raise InvalidStatusTransitionError(log_id, current.value, target.value)

            now = at or utc_now()
            entry = StatusHistoryEntry(status=target, timestamp=now, message=message)

            model.status = target.value
            model.status_history = [*(model.status_history or []), entry.model_dump(mode="json")]

            if target == DeliveryStatus.SENT:
                model.sent_at = format_timestamp(now)
                model.provider_message_id = provider_message_id
                model.provider_response = provider_response
            elif target == DeliveryStatus.FAILED:
                model.failed_at = format_timestamp(now)
                if error is not None:
                    model.error = error.model_dump(mode="json")

            self.session.flush()
            return model.to_domain()

        except (RecordNotFoundError, InvalidStatusTransitionError):
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating delivery log {log_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update delivery log: {e}") from e

    def increment_retry_count(self, log_id: str) -> None:
        """Count one more retry against an originating log's lineage."""
        try:
            result = self.session.execute(
                update(DeliveryLogModel)
                .where(DeliveryLogModel.id == log_id)
                .values(retry_count=DeliveryLogModel.retry_count + 1)
                .execution_options(synchronize_session="fetch")
            )
            self.session.flush()

            if result.rowcount == 0:
                raise RecordNotFoundError(f"Delivery log {log_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error incrementing retry count for log {log_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to increment retry count: {e}") from e

    def list_for_org(
        self,
        org_id: str,
        status: Optional[DeliveryStatus] = None,
        event: Optional[NotificationEvent] = None,
        limit: int = 50,
    ) -> List[EmailDeliveryLog]:
        """Most recent logs for an organization, newest first."""
        try:
            stmt = select(DeliveryLogModel).where(DeliveryLogModel.org_id == org_id)
            if status is not None:
                stmt = stmt.where(DeliveryLogModel.status == _enum_value(status))
            if event is not None:
                stmt = stmt.where(DeliveryLogModel.event == _enum_value(event))
            stmt = stmt.order_by(DeliveryLogModel.queued_at.desc()).limit(limit)

            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing delivery logs for org {org_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list delivery logs: {e}") from e

    def has_retry(self, log_id: str) -> bool:
        """Whether a retry attempt has already been created from ``log_id``."""
        try:
            stmt = select(func.count()).select_from(DeliveryLogModel).where(
                DeliveryLogModel.parent_log_id == log_id
            )
            return self.session.execute(stmt).scalar_one() > 0
        except SQLAlchemyError as e:
            logger.error(f"Error checking retries for delivery log {log_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check delivery log retries: {e}") from e

    def find_retryable(self, limit: int, org_id: Optional[str] = None) -> List[EmailDeliveryLog]:
        """Failed logs with retry budget and no retry yet, oldest first."""
        child = aliased(DeliveryLogModel)
        try:
            stmt = select(DeliveryLogModel).where(
                DeliveryLogModel.status == DeliveryStatus.FAILED.value,
                DeliveryLogModel.retry_count < DeliveryLogModel.max_retries,
                ~exists().where(child.parent_log_id == DeliveryLogModel.id),
            )
            if org_id is not None:
                stmt = stmt.where(DeliveryLogModel.org_id == org_id)
            stmt = stmt.order_by(DeliveryLogModel.failed_at.asc()).limit(limit)

            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error finding retryable delivery logs: {e}", exc_info=True)
            raise PersistenceError(f"Failed to find retryable delivery logs: {e}") from e
