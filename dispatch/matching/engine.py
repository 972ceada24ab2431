"""Rule matcher: selects the rules that apply to an incoming event.

A rule applies when it is enabled, belongs to the organization, is bound to
the event, and every one of its conditions evaluates true against the
payload (conditions are ANDed; an empty list always matches).
"""

from typing import Any, List, Mapping

from dispatch.domain.models import NotificationEvent, NotificationRule
from dispatch.logging import get_logger
from dispatch.persistence.repositories import RuleRepository

from .conditions import evaluate_condition

logger = get_logger(__name__, component="matcher")


class RuleMatcher:
    """Finds the enabled rules whose conditions hold for a payload."""

    def __init__(self, rule_repository: RuleRepository):
        self.rule_repository = rule_repository

    def find_matching_rules(
        self,
        org_id: str,
        event: NotificationEvent,
        payload: Mapping[str, Any],
    ) -> List[NotificationRule]:
        """Return matching rules ordered by ascending priority.

        Raises:
            PersistenceError: If the rules cannot be loaded
        """
        candidates = self.rule_repository.find_enabled(org_id, event)
        matched = [rule for rule in candidates if self.matches(rule, payload)]

        logger.debug(
            f"{len(matched)} of {len(candidates)} rules matched",
            extra={
                "event": "notification.rules.evaluated",
                "candidate_count": len(candidates),
                "matched_count": len(matched),
            },
        )
        return sorted(matched, key=lambda rule: rule.priority)

    @staticmethod
    def matches(rule: NotificationRule, payload: Mapping[str, Any]) -> bool:
        """True iff every condition of ``rule`` holds for ``payload``."""
        return all(evaluate_condition(condition, payload) for condition in rule.conditions)
