"""Utility functions for UTC time handling."""

from .timestamps import (
    elapsed_days,
    elapsed_hours,
    ensure_utc,
    format_timestamp,
    parse_iso_datetime,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "parse_iso_datetime",
    "format_timestamp",
    "elapsed_hours",
    "elapsed_days",
]
