"""Template management: create, update, clone, delete and seed defaults.

Every body is validated with the renderer before it is stored, so the engine
never meets a template that cannot compile. Built-in (system) templates can be
cloned but never edited or deleted.
"""

from contextlib import AbstractContextManager
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from dispatch.domain.models import NotificationEvent, NotificationTemplate, RenderedEmail
from dispatch.logging import get_logger
from dispatch.persistence.database import get_session
from dispatch.persistence.exceptions import RecordNotFoundError
from dispatch.persistence.repositories import TemplateRepository
from dispatch.utils.timestamps import utc_now

from .defaults import get_default_templates
from .models import TemplateValidationError
from .templates import TemplateRenderer

logger = get_logger(__name__, component="templates")

SYSTEM_USER = "system"

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "subject",
        "html_body",
        "text_body",
        "available_variables",
        "is_active",
        "preview_data",
    }
)


class TemplateService:
    """CRUD and seeding for an organization's notification templates."""

    def __init__(
        self,
        renderer: Optional[TemplateRenderer] = None,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
    ):
        self.session_scope = session_scope
        self.renderer = renderer or TemplateRenderer(session_scope=session_scope)

    def create_template(
        self,
        org_id: str,
        created_by: str,
        name: str,
        subject: str,
        html_body: str,
        event: NotificationEvent,
        description: str = "",
        text_body: Optional[str] = None,
        available_variables: Optional[List[str]] = None,
        preview_data: Optional[Dict[str, Any]] = None,
    ) -> NotificationTemplate:
        """Validate and store a new organization template.

        Raises:
            TemplateValidationError: If any body fails to compile
            PersistenceError: If database error occurs
        """
        self._validate(subject, html_body, text_body)

        template = NotificationTemplate(
            org_id=org_id,
            name=name,
            description=description,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            available_variables=available_variables or [],
            event=event,
            preview_data=preview_data,
            created_by=created_by,
        )

        with self.session_scope() as session:
            saved = TemplateRepository(session).save(template)

        logger.info(
            f"Created template '{name}' for org {org_id}",
            extra={"event": "template.created", "template_id": saved.id},
        )
        return saved

    def update_template(
        self, template_id: str, org_id: str, **updates: Any
    ) -> Optional[NotificationTemplate]:
        """Apply field updates to an organization template.

        Returns:
            The updated template, or None if it does not exist, belongs to
            another organization, or is a system template

        Raises:
            ValueError: If an unknown field is passed
            TemplateValidationError: If the resulting bodies fail to compile
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update template fields: {', '.join(sorted(unknown))}")

        with self.session_scope() as session:
            repo = TemplateRepository(session)
            existing = repo.get(template_id, org_id=org_id)
            if existing is None or existing.is_system:
                return None

            candidate = existing.model_copy(update={**updates, "updated_at": utc_now()})
            if {"subject", "html_body", "text_body"} & set(updates):
                self._validate(candidate.subject, candidate.html_body, candidate.text_body)

            return repo.save(candidate)

    def delete_template(self, template_id: str, org_id: str) -> bool:
        """Delete an organization template; system templates are never deleted."""
        with self.session_scope() as session:
            repo = TemplateRepository(session)
            existing = repo.get(template_id, org_id=org_id)
            if existing is None or existing.is_system:
                return False
            return repo.delete(template_id)

    def get_template(self, template_id: str, org_id: str) -> Optional[NotificationTemplate]:
        with self.session_scope() as session:
            return TemplateRepository(session).get(template_id, org_id=org_id)

    def list_templates(
        self,
        org_id: str,
        event: Optional[NotificationEvent] = None,
        is_active: Optional[bool] = None,
        is_system: Optional[bool] = None,
    ) -> List[NotificationTemplate]:
        """Templates for an organization, system templates first, then by name."""
        with self.session_scope() as session:
            templates = TemplateRepository(session).list_for_org(
                org_id, event=event, is_active=is_active, is_system=is_system
            )
        return sorted(templates, key=lambda t: (not t.is_system, t.name))

    def clone_template(
        self, source_template_id: str, org_id: str, new_name: str, created_by: str
    ) -> NotificationTemplate:
        """Copy a template (system or not) into a new editable template.

        Raises:
            RecordNotFoundError: If the source template does not exist
        """
        source = self.get_template(source_template_id, org_id)
        if source is None:
            raise RecordNotFoundError(f"Source template not found: {source_template_id}")

        return self.create_template(
            org_id=org_id,
            created_by=created_by,
            name=new_name,
            description=f"{source.description} (Copy)",
            subject=source.subject,
            html_body=source.html_body,
            text_body=source.text_body,
            event=source.event,
            available_variables=list(source.available_variables),
            preview_data=source.preview_data,
        )

    def preview_template(
        self, template_id: str, org_id: str, variables: Optional[Dict[str, Any]] = None
    ) -> RenderedEmail:
        """Render a stored template without counting it as used.

        Falls back to the template's ``preview_data`` when no variables are given.

        Raises:
            RecordNotFoundError: If the template does not exist
            TemplateRenderError: If rendering fails
        """
        template = self.get_template(template_id, org_id)
        if template is None:
            raise RecordNotFoundError(f"Template not found: {template_id}")

        return self.renderer.render_preview(
            template.subject,
            template.html_body,
            template.text_body,
            variables if variables is not None else (template.preview_data or {}),
        )

    def seed_default_templates(self, org_id: str) -> int:
        """Insert the built-in templates for an organization that has none.

        Returns:
            Number of templates created (0 if the organization already has templates)
        """
        with self.session_scope() as session:
            repo = TemplateRepository(session)
            existing = repo.count_for_org(org_id)
            if existing > 0:
                logger.info(
                    f"Organization {org_id} already has {existing} templates, skipping seeding",
                    extra={"event": "template.seed.skipped"},
                )
                return 0

            now = utc_now()
            defaults = get_default_templates()
            for default in defaults:
                repo.save(
                    NotificationTemplate(
                        org_id=org_id,
                        name=default.name,
                        description=default.description,
                        subject=default.subject,
                        html_body=default.html_body,
                        available_variables=list(default.available_variables),
                        event=default.event,
                        is_system=True,
                        created_by=SYSTEM_USER,
                        created_at=now,
                        updated_at=now,
                    )
                )

        logger.info(
            f"Seeded {len(defaults)} default email templates for organization {org_id}",
            extra={"event": "template.seed.completed", "count": len(defaults)},
        )
        return len(defaults)

    def _validate(self, subject: str, html_body: str, text_body: Optional[str]) -> None:
        result = self.renderer.validate(subject, html_body, text_body)
        if not result.valid:
            raise TemplateValidationError("Invalid template syntax", errors=result.errors)
