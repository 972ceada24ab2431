"""Credential encryption."""

from .encryption import CredentialCipher, EncryptionError

__all__ = ["CredentialCipher", "EncryptionError"]
