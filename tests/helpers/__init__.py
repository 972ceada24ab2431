"""Test helper utilities for notification dispatch tests."""

from .builders import (
    BASE_TIME,
    FakeClock,
    make_rule,
    make_settings,
    make_template,
    make_user,
    save_rule,
    save_settings,
    save_template,
    save_user,
)
from .stub_provider import StubProvider

__all__ = [
    "BASE_TIME",
    "FakeClock",
    "StubProvider",
    "make_rule",
    "make_settings",
    "make_template",
    "make_user",
    "save_rule",
    "save_settings",
    "save_template",
    "save_user",
]
