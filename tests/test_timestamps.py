"""Unit tests for timestamp utilities."""

from datetime import datetime, timedelta, timezone

import pytest

from dispatch.utils.timestamps import (
    elapsed_days,
    elapsed_hours,
    ensure_utc,
    format_timestamp,
    parse_iso_datetime,
    utc_now,
)

NOON = datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc)


class TestUtcNow:
    """Tests for utc_now function."""

    def test_utc_now_returns_aware_recent_datetime(self):
        """Test that utc_now returns a timezone-aware datetime in UTC."""
        before = datetime.now(timezone.utc)
        now = utc_now()
        after = datetime.now(timezone.utc)

        assert now.tzinfo == timezone.utc
        assert before <= now <= after


class TestEnsureUtc:
    """Tests for ensure_utc function."""

    def test_none(self):
        """Test that None input returns None."""
        assert ensure_utc(None) is None

    def test_naive_datetime_treated_as_utc(self):
        """Test that a naive datetime gets UTC attached without shifting."""
        result = ensure_utc(datetime(2025, 11, 4, 12, 0, 0))

        assert result == NOON
        assert result.tzinfo == timezone.utc

    def test_other_timezone_converted(self):
        """Test that an aware datetime in another zone is converted."""
        eastern = timezone(timedelta(hours=-5))

        result = ensure_utc(datetime(2025, 11, 4, 7, 0, 0, tzinfo=eastern))

        assert result == NOON
        assert result.tzinfo == timezone.utc


class TestStorageFormat:
    """Tests for format_timestamp and parse_iso_datetime."""

    def test_format(self):
        """Test the storage format keeps microseconds and a Z suffix."""
        assert format_timestamp(NOON.replace(microsecond=123456)) == "2025-11-04T12:00:00.123456Z"

    def test_format_none(self):
        """Test None formats to None."""
        assert format_timestamp(None) is None

    def test_format_sorts_chronologically(self):
        """Test stored strings compare in time order."""
        earlier = format_timestamp(NOON)
        later = format_timestamp(NOON + timedelta(microseconds=1))

        assert earlier < later

    def test_parse_storage_format(self):
        """Test the storage format parses back to the same instant."""
        value = NOON.replace(microsecond=42)

        assert parse_iso_datetime(format_timestamp(value)) == value

    @pytest.mark.parametrize(
        "text",
        ["2025-11-04T12:00:00Z", "2025-11-04T12:00:00+00:00", "2025-11-04T07:00:00-05:00", " 2025-11-04T12:00:00Z "],
    )
    def test_parse_variants(self, text):
        """Test offsets and whitespace are accepted."""
        assert parse_iso_datetime(text) == NOON

    def test_parse_bare_date(self):
        """Test a bare date parses to midnight UTC."""
        assert parse_iso_datetime("2025-11-04") == datetime(2025, 11, 4, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", [None, "", "   ", "not-a-date"])
    def test_parse_invalid(self, text):
        """Test empty and malformed strings return None."""
        assert parse_iso_datetime(text) is None


class TestElapsed:
    """Tests for rate-limit window arithmetic."""

    def test_elapsed_hours(self):
        """Test hours between two instants."""
        assert elapsed_hours(NOON, NOON + timedelta(minutes=90)) == 1.5

    def test_elapsed_days(self):
        """Test days between two instants."""
        assert elapsed_days(NOON, NOON + timedelta(hours=36)) == 1.5

    def test_naive_since_is_utc(self):
        """Test a naive start is treated as UTC."""
        assert elapsed_hours(datetime(2025, 11, 4, 12, 0, 0), NOON + timedelta(hours=1)) == 1.0

    def test_defaults_to_now(self):
        """Test elapsed time is measured against the current time by default."""
        assert 0.99 < elapsed_hours(utc_now() - timedelta(hours=1)) < 1.01
