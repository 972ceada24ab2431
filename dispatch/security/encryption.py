"""Fernet encryption for relay credentials stored at rest.

The SMTP relay password is encrypted when settings are saved and decrypted
only inside the relay provider immediately before connecting.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised for a missing/invalid key or an undecryptable secret."""

    pass


class CredentialCipher:
    """Symmetric encryption of short secrets with a Fernet key.

    Example:
        >>> cipher = CredentialCipher(Fernet.generate_key().decode())
        >>> token = cipher.encrypt("relay-password")
        >>> cipher.decrypt(token)
        'relay-password'
    """

    def __init__(self, key: Optional[str]):
        """Build the cipher.

        Args:
            key: URL-safe base64 encoded 32-byte Fernet key (ENCRYPTION_KEY)

        Raises:
            EncryptionError: If the key is missing or malformed
        """
        if not key:
            logger.error("Encryption key not configured")
            raise EncryptionError(
                "Encryption key not configured. Set the ENCRYPTION_KEY environment variable."
            )

        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid encryption key format: {type(e).__name__}")
            raise EncryptionError(
                "Invalid encryption key format. Key must be 32 bytes, URL-safe base64-encoded."
            ) from e

    @staticmethod
    def generate_key() -> str:
        """Generate a fresh key suitable for ENCRYPTION_KEY."""
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` and return the token as text.

        Raises:
            EncryptionError: If plaintext is empty
        """
        if not plaintext:
            raise EncryptionError("Cannot encrypt empty value")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a token produced by ``encrypt``.

        Raises:
            EncryptionError: If the token is empty, tampered with, or was made with another key
        """
        if not ciphertext:
            raise EncryptionError("Cannot decrypt empty value")

        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            logger.error("Decryption failed: invalid token or wrong key")
            raise EncryptionError(
                "Failed to decrypt credential. The value may be corrupted or the key may have changed."
            ) from e
