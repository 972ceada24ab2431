"""Condition operators for rule matching.

Operators are a closed set dispatched through plain functions; nothing in a
rule is ever evaluated as code. A field path that does not resolve yields
MISSING, which makes string and numeric comparisons false and is-empty true.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from dispatch.domain.models import Condition, ConditionOperator

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for a dot-path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def get_nested_value(data: Any, path: str) -> Any:
    """Resolve ``a.b.c`` against nested mappings.

    Returns MISSING when any segment is absent or a non-mapping is reached.

    Example:
        >>> get_nested_value({"ticket": {"priority": "high"}}, "ticket.priority")
        'high'
    """
    if not path:
        return MISSING

    current = data
    for key in path.split("."):
        if not key or not isinstance(current, Mapping) or key not in current:
            return MISSING
        current = current[key]
    return current


def _as_text(value: Any) -> Optional[str]:
    if value is MISSING or value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(item) or "" for item in value)
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    if value is MISSING or value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _equals(actual: Any, expected: Any) -> bool:
    return actual is not MISSING and actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    haystack = _as_text(actual)
    needle = _as_text(expected)
    return haystack is not None and needle is not None and needle in haystack


def _compare(actual: Any, expected: Any, op: Callable[[float, float], bool]) -> bool:
    left = _as_number(actual)
    right = _as_number(expected)
    if left is None or right is None:
        return False
    return op(left, right)


def _is_empty(actual: Any) -> bool:
    return actual is MISSING or not actual


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple)) and actual is not MISSING and actual in expected


def _not_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple)) and (actual is MISSING or actual not in expected)


OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: lambda actual, expected: not _equals(actual, expected),
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: lambda actual, expected: not _contains(actual, expected),
    ConditionOperator.GREATER_THAN: lambda actual, expected: _compare(actual, expected, lambda a, b: a > b),
    ConditionOperator.LESS_THAN: lambda actual, expected: _compare(actual, expected, lambda a, b: a < b),
    ConditionOperator.IS_EMPTY: lambda actual, expected: _is_empty(actual),
    ConditionOperator.IS_NOT_EMPTY: lambda actual, expected: not _is_empty(actual),
    ConditionOperator.IN: _in,
    ConditionOperator.NOT_IN: _not_in,
}


def evaluate_operator(actual: Any, operator: str, expected: Any) -> bool:
    """Apply ``operator`` to an already-resolved field value.

    Unknown operators evaluate to False.
    """
    try:
        op = ConditionOperator(operator)
    except ValueError:
        logger.debug(f"Unknown condition operator '{operator}' evaluates to false")
        return False

    return OPERATORS[op](actual, expected)


def evaluate_condition(condition: Condition, payload: Mapping) -> bool:
    """Resolve the condition's field in ``payload`` and apply its operator. Never raises."""
    actual = get_nested_value(payload, condition.field)
    try:
        return evaluate_operator(actual, condition.operator, condition.value)
    except TypeError:
        # Unorderable or unhashable operands
        return False
