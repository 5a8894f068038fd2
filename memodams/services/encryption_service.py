"""
Encryption service for second-factor secrets.

WHAT: Symmetric encryption of TOTP shared secrets before they are stored.

WHY: OWASP A02 (Cryptographic Failures). A TOTP secret is as good as the
factor itself: anyone who reads it from a database dump can generate valid
codes forever. Unlike passwords they cannot be hashed, because the server
needs the plaintext to compute the expected code.

HOW: Fernet (from the cryptography library):
- AES-128-CBC encryption with HMAC-SHA256 authentication
- URL-safe base64 encoding
- Key taken from settings.ENCRYPTION_KEY
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from memodams.core.config import settings
from memodams.core.exceptions import EncryptionError

logger = logging.getLogger(__name__)


class EncryptionService:
    """
    Service for encrypting and decrypting factor secrets.

    Security notes:
    - Never log plaintext values
    - Invalid tokens raise EncryptionError (no silent failures)

    Example:
        service = EncryptionService()
        encrypted = service.encrypt(pyotp.random_base32())
        secret = service.decrypt(encrypted)
    """

    def __init__(self, key: Optional[str] = None):
        """
        Set up the Fernet cipher.

        Args:
            key: Optional Fernet key (base64-encoded). Defaults to settings.ENCRYPTION_KEY.

        Raises:
            EncryptionError: If key is missing or invalid.
        """
        encryption_key = key or settings.ENCRYPTION_KEY

        if not encryption_key:
            logger.error("Encryption key not configured")
            raise EncryptionError(
                message="Encryption key not configured",
                hint="Set ENCRYPTION_KEY environment variable",
            )

        try:
            self._fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid encryption key format: {e}")
            raise EncryptionError(
                message="Invalid encryption key format",
                hint="Key must be 32 bytes, URL-safe base64-encoded",
            )

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string.

        Returns:
            Base64-encoded Fernet token

        Raises:
            EncryptionError: If the value is empty
        """
        if not plaintext:
            raise EncryptionError(message="Cannot encrypt empty value")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a Fernet token back to plaintext.

        Raises:
            EncryptionError: If the token is empty, corrupted or was
                encrypted under a different key
        """
        if not ciphertext:
            raise EncryptionError(message="Cannot decrypt empty value")

        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.warning("Decryption failed: invalid token or wrong key")
            raise EncryptionError(
                message="Failed to decrypt data",
                reason="Invalid token - data may be corrupted or key changed",
            )

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new Fernet key for ENCRYPTION_KEY.

        Returns:
            URL-safe base64-encoded 32-byte key (44 characters)
        """
        return Fernet.generate_key().decode()


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """
    Get or create the global encryption service instance.

    WHY: Ensures consistent key usage across the application.
    """
    global _encryption_service

    if _encryption_service is None:
        _encryption_service = EncryptionService()

    return _encryption_service
