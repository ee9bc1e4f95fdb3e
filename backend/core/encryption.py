"""
Token encryption at rest

Versioned Fernet envelope for social platform credentials. TOKEN_ENCRYPTION_KEY
holds one or more comma separated Fernet keys, newest first; MultiFernet
decrypts with any of them and encrypts with the first, which is how keys are
rotated without a data migration.
"""
import hashlib
import logging
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from backend.core.config import get_settings

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a token cannot be encrypted or decrypted"""
    pass


class TokenEncryption:
    """Encrypt/decrypt opaque platform tokens"""

    current_version = 1

    def __init__(self, keys: List[str]):
        if not keys:
            raise EncryptionError("At least one Fernet key is required")
        try:
            self._fernets = [Fernet(k.encode() if isinstance(k, str) else k) for k in keys]
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"TOKEN_ENCRYPTION_KEY is invalid: {e}") from e
        self._multi = MultiFernet(self._fernets)
        self.default_kid = hashlib.sha256(keys[0].encode()).hexdigest()[:12]

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        return self._multi.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        if ciphertext is None:
            return None
        try:
            return self._multi.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise EncryptionError("Stored token could not be decrypted with any configured key") from e

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a token under the newest key"""
        return self._multi.rotate(ciphertext.encode("utf-8")).decode("utf-8")


_encryption: Optional[TokenEncryption] = None


def get_encryption() -> TokenEncryption:
    """Process-wide encryption instance"""
    global _encryption
    if _encryption is None:
        settings = get_settings()
        raw = settings.token_encryption_key or ""
        keys = [k.strip() for k in raw.split(",") if k.strip()]
        if not keys:
            if settings.is_production:
                raise EncryptionError("TOKEN_ENCRYPTION_KEY must be set in production")
            logger.warning("TOKEN_ENCRYPTION_KEY not set; using an ephemeral key (tokens will not survive restart)")
            keys = [Fernet.generate_key().decode()]
        _encryption = TokenEncryption(keys)
    return _encryption


def reset_encryption() -> None:
    """Drop the cached instance (tests and key rotation)"""
    global _encryption
    _encryption = None
