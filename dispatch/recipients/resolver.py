"""Recipient resolver: expands a rule's recipient specs into addresses.

Resolution for one rule execution:
1. requester / assignee / user / role specs accumulate user ids (deduplicated)
2. email specs accumulate literal addresses with user id ``external``
3. the triggering user, if any, is removed from the id set
4. remaining ids resolve to active users of the organization

Literal addresses are deduplicated among themselves but are not compared
against user-derived addresses.
"""

from typing import Any, Dict, List, Mapping, Optional

from dispatch.domain.models import (
    EXTERNAL_USER_ID,
    NotificationRule,
    RecipientAddress,
    RecipientType,
)
from dispatch.logging import get_logger
from dispatch.persistence.repositories import UserRepository

logger = get_logger(__name__, component="resolver")


class RecipientResolver:
    """Turns recipient specs plus an event payload into RecipientAddress values."""

    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository

    def resolve_recipients(
        self,
        org_id: str,
        rule: NotificationRule,
        payload: Mapping[str, Any],
        triggered_by: Optional[str] = None,
    ) -> List[RecipientAddress]:
        """Resolve every recipient spec of ``rule``.

        Args:
            org_id: Organization the rule belongs to
            rule: Rule whose recipient specs are expanded
            payload: Event payload (``requesterId``, ``createdBy``, ``assignedTo``)
            triggered_by: User id that caused the event; never notified

        Returns:
            User-derived addresses followed by literal addresses

        Raises:
            PersistenceError: If users cannot be loaded
        """
        # dict keeps first-seen order while deduplicating ids
        user_ids: Dict[str, None] = {}
        literal_addresses: Dict[str, RecipientAddress] = {}

        for spec in rule.recipients:
            spec_type = RecipientType(spec.type)

            if spec_type == RecipientType.REQUESTER:
                requester = payload.get("requesterId") or payload.get("createdBy")
                if requester:
                    user_ids[str(requester)] = None

            elif spec_type == RecipientType.ASSIGNEE:
                assignee = payload.get("assignedTo")
                if assignee:
                    user_ids[str(assignee)] = None

            elif spec_type == RecipientType.USER:
                for user_id in spec.values():
                    user_ids[str(user_id)] = None

            elif spec_type == RecipientType.ROLE:
                role_ids = spec.values()
                if role_ids:
                    for user in self.user_repository.get_active_by_roles(org_id, role_ids):
                        user_ids[user.id] = None

            elif spec_type == RecipientType.EMAIL:
                for address in spec.values():
                    key = address.strip().lower()
                    if key and key not in literal_addresses:
                        literal_addresses[key] = RecipientAddress(
                            user_id=EXTERNAL_USER_ID, email=address.strip()
                        )

        if triggered_by and str(triggered_by) in user_ids:
            del user_ids[str(triggered_by)]
            logger.debug(
                "Triggering user removed from recipients",
                extra={"event": "notification.recipient.self_excluded", "user_id": triggered_by},
            )

        resolved: List[RecipientAddress] = []
        if user_ids:
            users = {
                user.id: user
                for user in self.user_repository.get_active_by_ids(org_id, list(user_ids))
            }
            for user_id in user_ids:
                user = users.get(user_id)
                if user is None:
                    logger.debug(
                        f"User {user_id} is unknown or inactive; skipped",
                        extra={"event": "notification.recipient.unresolved", "user_id": user_id},
                    )
                    continue
                resolved.append(RecipientAddress(user_id=user.id, email=user.email))

        resolved.extend(literal_addresses.values())
        return resolved
