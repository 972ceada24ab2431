"""Template rendering for notification emails using a sandboxed Jinja2 environment.

Templates are stored per organization and use a deliberately small grammar:

- ``{{ path.to.value }}`` substitutes a value looked up by dot-path in the
  variables map; missing paths render as an empty string
- ``{% if path.to.value %} ... {% else %} ... {% endif %}`` shows a section only
  when the value is truthy

Anything else Jinja2 would normally accept (filters, calls, arithmetic,
loops, subscripts, private names) is rejected at validation time and again
before rendering, so caller-supplied templates can never execute code.
"""

from collections.abc import Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from jinja2 import ChainableUndefined, TemplateError, TemplateSyntaxError, nodes
from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy.orm import Session

from dispatch.domain.models import NotificationTemplate, RenderedEmail
from dispatch.logging import get_logger
from dispatch.persistence.database import get_session
from dispatch.persistence.exceptions import RecordNotFoundError
from dispatch.persistence.repositories import TemplateRepository
from dispatch.utils.timestamps import utc_now

from .models import TemplateRenderError

logger = get_logger(__name__, component="templates")

SUBJECT_LABEL = "Subject"
HTML_LABEL = "HTML Body"
TEXT_LABEL = "Text Body"

_ALLOWED_NODES = (nodes.Output, nodes.TemplateData, nodes.Name, nodes.Getattr, nodes.If)
_PATH_NODES = (nodes.Name, nodes.Getattr)


def _finalize(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


class PathEnvironment(SandboxedEnvironment):
    """Sandboxed environment where ``a.b`` only ever means ``a["b"]``.

    Attribute access on Python objects is never performed; a missing key or a
    non-mapping parent yields an undefined value that renders as "".
    """

    def __init__(self, autoescape: bool):
        super().__init__(
            autoescape=autoescape,
            undefined=ChainableUndefined,
            finalize=_finalize,
        )
        self.globals = {}
        self.filters = {}
        self.tests = {}

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping) and attribute in obj:
            return obj[attribute]
        return self.undefined(obj=obj, name=attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        if isinstance(obj, Mapping) and isinstance(argument, str):
            return self.getattr(obj, argument)
        return self.undefined(obj=obj, name=argument)


@dataclass
class TemplateValidationResult:
    """Outcome of validating a template's three bodies.

    Attributes:
        valid: True when every body compiled
        errors: Per-field messages such as ``"Subject: unexpected '}'"``
    """

    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


class TemplateRenderer:
    """Renders and validates notification templates.

    ``render`` is the stateful entry point used for real deliveries: it bumps
    the template's usage counter. ``render_preview`` and ``validate`` have no
    side effects.
    """

    def __init__(
        self,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the renderer.

        Args:
            session_scope: Context manager factory yielding a transactional session
            clock: Source of the current UTC time (injectable for tests)
        """
        self.session_scope = session_scope
        self.clock = clock
        self.html_env = PathEnvironment(autoescape=True)
        self.text_env = PathEnvironment(autoescape=False)

    def render_template(
        self, template_id: str, org_id: str, variables: Dict[str, Any]
    ) -> RenderedEmail:
        """Load a template by id and render it for delivery.

        Raises:
            TemplateRenderError: If the template is missing, inactive, or fails to render
        """
        with self.session_scope() as session:
            template = TemplateRepository(session).get(template_id, org_id=org_id)

        if template is None:
            raise TemplateRenderError(f"Template not found: {template_id}")

        return self.render(template, variables)

    def render(self, template: NotificationTemplate, variables: Dict[str, Any]) -> RenderedEmail:
        """Render a stored template and record the usage.

        Args:
            template: Template to render
            variables: Values available to ``{{ path }}`` lookups

        Returns:
            RenderedEmail with subject, HTML body and optional text body

        Raises:
            TemplateRenderError: If the template is inactive or rendering fails
        """
        if not template.is_active:
            raise TemplateRenderError(f"Template is not active: {template.id}")

        rendered = self.render_preview(
            template.subject, template.html_body, template.text_body, variables
        )

        try:
            with self.session_scope() as session:
                TemplateRepository(session).record_usage(template.id, self.clock())
        except RecordNotFoundError:
            logger.warning(
                f"Template {template.id} disappeared before its usage could be recorded",
                extra={"event": "template.usage.missing"},
            )

        logger.debug(
            f"Rendered template {template.id}",
            extra={"event": "template.rendered", "template_id": template.id},
        )
        return rendered

    def render_preview(
        self,
        subject: str,
        html_body: str,
        text_body: Optional[str],
        variables: Dict[str, Any],
    ) -> RenderedEmail:
        """Render template strings without touching storage.

        Raises:
            TemplateRenderError: If any body is invalid or rendering fails
        """
        context = dict(variables or {})
        try:
            rendered_subject = self._compile(self.text_env, subject, SUBJECT_LABEL).render(context)
            rendered_html = self._compile(self.html_env, html_body, HTML_LABEL).render(context)
            rendered_text = None
            if text_body:
                rendered_text = self._compile(self.text_env, text_body, TEXT_LABEL).render(context)
        except TemplateRenderError:
            raise
        except TemplateError as e:
            error_msg = f"Failed to render template: {e}"
            logger.error(error_msg, exc_info=True)
            raise TemplateRenderError(error_msg) from e

        return RenderedEmail(
            subject=rendered_subject.strip().replace("\n", " "),
            html_body=rendered_html,
            text_body=rendered_text,
        )

    def validate(
        self, subject: str, html_body: str, text_body: Optional[str] = None
    ) -> TemplateValidationResult:
        """Compile each body independently and collect every error."""
        errors: List[str] = []

        checks = [(self.text_env, subject, SUBJECT_LABEL), (self.html_env, html_body, HTML_LABEL)]
        if text_body:
            checks.append((self.text_env, text_body, TEXT_LABEL))

        for env, source, label in checks:
            errors.extend(self._check(env, source or "", label))

        return TemplateValidationResult(valid=not errors, errors=errors)

    def _compile(self, env: PathEnvironment, source: str, label: str):
        errors = self._check(env, source or "", label)
        if errors:
            raise TemplateRenderError(f"Failed to render template: {'; '.join(errors)}")
        return env.from_string(env.parse(source or ""))

    @staticmethod
    def _check(env: PathEnvironment, source: str, label: str) -> List[str]:
        try:
            tree = env.parse(source)
        except TemplateSyntaxError as e:
            return [f"{label}: {e.message} (line {e.lineno})"]

        errors = []
        for node in tree.find_all(nodes.Node):
            problem = _unsupported(node)
            if problem:
                errors.append(f"{label}: {problem} (line {node.lineno})")
        return errors


def _unsupported(node: nodes.Node) -> Optional[str]:
    """Describe why a parsed node falls outside the template grammar, or None."""
    if not isinstance(node, _ALLOWED_NODES):
        return f"unsupported template construct '{type(node).__name__}'"
    if isinstance(node, nodes.Name):
        if node.ctx != "load":
            return f"cannot assign to '{node.name}'"
        if node.name.startswith("_"):
            return f"private variable '{node.name}' is not allowed"
    if isinstance(node, nodes.Getattr) and node.attr.startswith("_"):
        return f"private field '{node.attr}' is not allowed"
    if isinstance(node, nodes.If) and not isinstance(node.test, _PATH_NODES):
        return "conditions must test a single variable path"
    return None
