"""Tests for rule condition operators and the rule matcher."""

from unittest.mock import Mock

import pytest

from dispatch.domain.models import Condition, NotificationEvent, NotificationRule
from dispatch.matching.conditions import (
    MISSING,
    evaluate_condition,
    evaluate_operator,
    get_nested_value,
)
from dispatch.matching.engine import RuleMatcher
from dispatch.persistence import RuleRepository, get_session
from tests.helpers import save_rule


def _rule(priority=100, conditions=None, name="rule"):
    return NotificationRule(
        org_id="org-1",
        name=name,
        event=NotificationEvent.TICKET_CREATED,
        template_id="tpl-1",
        priority=priority,
        conditions=conditions or [],
    )


class TestGetNestedValue:
    """Tests for dot-path lookup."""

    def test_resolves_nested_path(self):
        """Test nested mappings are walked segment by segment."""
        payload = {"ticket": {"priority": "high", "meta": {"team": "ops"}}}
        assert get_nested_value(payload, "ticket.priority") == "high"
        assert get_nested_value(payload, "ticket.meta.team") == "ops"

    def test_missing_segment_returns_missing(self):
        """Test an absent key yields MISSING rather than raising."""
        assert get_nested_value({"ticket": {}}, "ticket.priority") is MISSING

    def test_non_mapping_parent_returns_missing(self):
        """Test walking into a scalar yields MISSING."""
        assert get_nested_value({"ticket": "T-1"}, "ticket.priority") is MISSING

    def test_empty_path_returns_missing(self):
        """Test an empty path never resolves."""
        assert get_nested_value({"a": 1}, "") is MISSING

    def test_none_value_is_not_missing(self):
        """Test an explicit null is returned as None."""
        assert get_nested_value({"a": None}, "a") is None


class TestOperators:
    """Tests for each condition operator."""

    @pytest.mark.parametrize(
        "actual,operator,expected,result",
        [
            ("high", "equals", "high", True),
            ("low", "equals", "high", False),
            ("low", "not-equals", "high", True),
            ("Printer on fire", "contains", "fire", True),
            ("Printer", "contains", "fire", False),
            ("Printer", "not-contains", "fire", True),
            (5, "greater-than", 3, True),
            ("10", "greater-than", "9", True),
            (2, "less-than", 3, True),
            ("", "is-empty", None, True),
            ([], "is-empty", None, True),
            ("x", "is-not-empty", None, True),
            ("high", "in", ["high", "urgent"], True),
            ("low", "in", ["high", "urgent"], False),
            ("low", "not-in", ["high", "urgent"], True),
        ],
    )
    def test_operator_results(self, actual, operator, expected, result):
        """Test operator truth table on resolved values."""
        assert evaluate_operator(actual, operator, expected) is result

    def test_missing_field_comparisons_are_false(self):
        """Test equals/contains/greater-than against a missing field are false."""
        assert evaluate_operator(MISSING, "equals", "x") is False
        assert evaluate_operator(MISSING, "contains", "x") is False
        assert evaluate_operator(MISSING, "greater-than", 1) is False
        assert evaluate_operator(MISSING, "less-than", 1) is False

    def test_missing_field_is_empty(self):
        """Test a missing field counts as empty."""
        assert evaluate_operator(MISSING, "is-empty", None) is True
        assert evaluate_operator(MISSING, "is-not-empty", None) is False

    def test_missing_field_negations_are_true(self):
        """Test not-equals, not-contains and not-in hold for a missing field."""
        assert evaluate_operator(MISSING, "not-equals", "x") is True
        assert evaluate_operator(MISSING, "not-contains", "x") is True
        assert evaluate_operator(MISSING, "not-in", ["x"]) is True

    def test_non_numeric_comparison_is_false(self):
        """Test greater-than with a non-numeric operand is false."""
        assert evaluate_operator("abc", "greater-than", 1) is False

    def test_in_requires_list(self):
        """Test in/not-in with a scalar expected value is false."""
        assert evaluate_operator("a", "in", "abc") is False
        assert evaluate_operator("a", "not-in", "abc") is False

    def test_unknown_operator_is_false(self):
        """Test an operator outside the closed set evaluates false."""
        assert evaluate_operator("a", "matches-regex", "a") is False

    def test_unhashable_operands_do_not_raise(self):
        """Test evaluate_condition swallows operand type errors."""
        condition = Condition(field="tags", operator="greater-than", value={"a": 1})
        assert evaluate_condition(condition, {"tags": ["a"]}) is False


class TestRuleMatcher:
    """Tests for RuleMatcher."""

    def test_empty_conditions_always_match(self):
        """Test a rule without conditions matches any payload."""
        assert RuleMatcher.matches(_rule(), {}) is True

    def test_conditions_are_anded(self):
        """Test every condition must hold."""
        rule = _rule(
            conditions=[
                Condition(field="ticket.priority", operator="equals", value="high"),
                Condition(field="ticket.category", operator="equals", value="network"),
            ]
        )
        assert RuleMatcher.matches(rule, {"ticket": {"priority": "high", "category": "network"}})
        assert not RuleMatcher.matches(rule, {"ticket": {"priority": "high", "category": "email"}})

    def test_results_sorted_by_priority(self):
        """Test matching rules come back lowest priority value first."""
        repo = Mock()
        repo.find_enabled.return_value = [
            _rule(priority=50, name="b"),
            _rule(priority=10, name="a"),
            _rule(priority=90, name="c"),
        ]

        rules = RuleMatcher(repo).find_matching_rules("org-1", NotificationEvent.TICKET_CREATED, {})

        assert [rule.name for rule in rules] == ["a", "b", "c"]
        repo.find_enabled.assert_called_once_with("org-1", NotificationEvent.TICKET_CREATED)

    def test_non_matching_rules_filtered(self):
        """Test rules whose conditions fail are dropped."""
        repo = Mock()
        repo.find_enabled.return_value = [
            _rule(name="urgent", conditions=[Condition(field="priority", operator="equals", value="urgent")]),
            _rule(name="any"),
        ]

        rules = RuleMatcher(repo).find_matching_rules(
            "org-1", NotificationEvent.TICKET_CREATED, {"priority": "low"}
        )

        assert [rule.name for rule in rules] == ["any"]

    def test_only_enabled_rules_for_event_are_loaded(self, db):
        """Test disabled rules and other events never reach the matcher."""
        save_rule("tpl-1", name="enabled")
        save_rule("tpl-1", name="disabled", is_enabled=False)
        save_rule("tpl-1", name="other-event", event=NotificationEvent.TICKET_RESOLVED)
        save_rule("tpl-1", name="other-org", org_id="org-2")

        with get_session() as session:
            rules = RuleMatcher(RuleRepository(session)).find_matching_rules(
                "org-1", NotificationEvent.TICKET_CREATED, {}
            )

        assert [rule.name for rule in rules] == ["enabled"]
