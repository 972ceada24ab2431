"""Tests for logging context propagation."""

import threading

from dispatch.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)


def test_empty_context():
    """Test that context starts empty."""
    assert get_log_context() == {}


def test_push_and_pop():
    """Test pushing fields and restoring with the token."""
    token = push_log_context(org_id="org-1", trigger_event="ticket.created")
    assert get_log_context() == {"org_id": "org-1", "trigger_event": "ticket.created"}

    pop_log_context(token)
    assert get_log_context() == {}


def test_nested_layers():
    """Test trigger, rule and delivery layers stack and unwind in order."""
    with log_context(org_id="org-1", trigger_event="ticket.created"):
        with log_context(rule_id="rule-1"):
            with log_context(delivery_id="log-1"):
                assert get_log_context() == {
                    "org_id": "org-1",
                    "trigger_event": "ticket.created",
                    "rule_id": "rule-1",
                    "delivery_id": "log-1",
                }
            assert "delivery_id" not in get_log_context()
        assert get_log_context() == {"org_id": "org-1", "trigger_event": "ticket.created"}

    assert get_log_context() == {}


def test_context_override():
    """Test that pushing the same key overwrites and later restores."""
    with log_context(rule_id="rule-1"):
        with log_context(rule_id="rule-2"):
            assert get_log_context() == {"rule_id": "rule-2"}
        assert get_log_context() == {"rule_id": "rule-1"}


def test_context_restored_after_exception():
    """Test that context is restored even when an exception escapes."""
    try:
        with log_context(org_id="org-1"):
            raise ValueError("boom")
    except ValueError:
        pass

    assert get_log_context() == {}


def test_clear_context():
    """Test clearing all context."""
    push_log_context(org_id="org-1", rule_id="rule-1")

    clear_log_context()

    assert get_log_context() == {}


def test_returns_copy():
    """Test that get_log_context returns a copy, not the live dict."""
    with log_context(org_id="org-1"):
        context = get_log_context()
        context["rule_id"] = "modified"

        assert get_log_context() == {"org_id": "org-1"}


def test_threads_do_not_share_context():
    """Test context set in a worker thread does not leak into the caller."""
    seen = {}

    def worker():
        with log_context(org_id="org-2"):
            seen["inside"] = get_log_context()

    with log_context(org_id="org-1"):
        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert get_log_context() == {"org_id": "org-1"}

    assert seen["inside"] == {"org_id": "org-2"}
