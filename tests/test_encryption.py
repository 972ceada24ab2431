"""Tests for relay credential encryption."""

import pytest

from dispatch.security.encryption import CredentialCipher, EncryptionError


class TestCredentialCipher:
    """Tests for CredentialCipher."""

    def test_round_trip(self):
        """Test a secret decrypts back to its plaintext and is not stored as-is."""
        cipher = CredentialCipher(CredentialCipher.generate_key())

        token = cipher.encrypt("relay-password")

        assert token != "relay-password"
        assert cipher.decrypt(token) == "relay-password"

    def test_missing_key(self):
        """Test an unset key is rejected with guidance."""
        with pytest.raises(EncryptionError, match="ENCRYPTION_KEY"):
            CredentialCipher(None)

    def test_malformed_key(self):
        """Test a key that is not a Fernet key is rejected."""
        with pytest.raises(EncryptionError, match="Invalid encryption key format"):
            CredentialCipher("too-short")

    def test_wrong_key(self):
        """Test a token from another key cannot be decrypted."""
        token = CredentialCipher(CredentialCipher.generate_key()).encrypt("secret")
        other = CredentialCipher(CredentialCipher.generate_key())

        with pytest.raises(EncryptionError, match="Failed to decrypt"):
            other.decrypt(token)

    def test_empty_values(self):
        """Test empty plaintext and ciphertext are rejected."""
        cipher = CredentialCipher(CredentialCipher.generate_key())
        with pytest.raises(EncryptionError):
            cipher.encrypt("")
        with pytest.raises(EncryptionError):
            cipher.decrypt("")
