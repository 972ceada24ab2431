"""Rule matching for incoming events.

This module provides:
- RuleMatcher: loads enabled rules for (organization, event) and filters them
- evaluate_condition / evaluate_operator: the closed set of condition operators
- get_nested_value: dot-path lookup into event payloads
"""

from .conditions import MISSING, evaluate_condition, evaluate_operator, get_nested_value
from .engine import RuleMatcher

__all__ = [
    "RuleMatcher",
    "evaluate_condition",
    "evaluate_operator",
    "get_nested_value",
    "MISSING",
]
