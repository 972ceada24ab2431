"""Notification dispatch engine: domain events in, rule-driven emails out."""

__version__ = "1.0.0"
