"""Recipient resolution for notification rules."""

from .resolver import RecipientResolver

__all__ = ["RecipientResolver"]
