"""
Credential Encryption

Symmetric Fernet encryption for shop access tokens so they never land in the
tenant store in plaintext.
"""

from typing import Optional, Union

import structlog
from cryptography.fernet import Fernet, InvalidToken

from profit_pipeline.config import get_settings
from profit_pipeline.exceptions import CredentialError

logger = structlog.get_logger(__name__)


class CredentialCipher:
    """Encrypts and decrypts access credentials with a Fernet key"""

    def __init__(self, key: Union[str, bytes]):
        if not key:
            raise CredentialError("Encryption key is not configured")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise CredentialError(
                "Encryption key must be a URL-safe base64-encoded 32-byte key"
            ) from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret before persisting it.

        Returns:
            URL-safe base64 ciphertext suitable for storage
        """
        if not plaintext:
            raise CredentialError("Refusing to encrypt an empty credential")
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        if not token:
            raise CredentialError("No stored credential to decrypt")
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            logger.error("Credential decryption failed")
            raise CredentialError("Stored credential could not be decrypted") from exc


def get_cipher(key: Optional[str] = None) -> CredentialCipher:
    """Build a cipher from the explicit key or the ENCRYPTION_KEY setting."""
    if key is None:
        secret = get_settings().security.encryption_key
        key = secret.get_secret_value() if secret is not None else ""
    return CredentialCipher(key)
