"""Shared pytest fixtures."""

import pytest

from dispatch.logging.context import clear_log_context
from dispatch.persistence import close_database, init_database


@pytest.fixture
def db():
    """Fresh in-memory database for one test."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture(autouse=True)
def clean_log_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()
