"""
Token encryption for GitHub credentials at rest.

Ciphertext format: <salt_b64>:<fernet_token>
A fresh salt is drawn per encryption and the Fernet key is derived from the
configured secret with PBKDF2-HMAC-SHA256.
"""

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gitmemo.config import get_settings
from gitmemo.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
KDF_ITERATIONS = 100_000


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class TokenCipher:
    """Encrypts and decrypts tokens with a server-side secret."""

    def __init__(self, secret: Optional[str]):
        self._secret = secret

    @classmethod
    def from_settings(cls) -> "TokenCipher":
        return cls(get_settings().encryption_key)

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError("Encryption key not configured (set ENCRYPTION_KEY)")
        return self._secret

    def encrypt(self, token: str) -> str:
        secret = self._require_secret()
        salt = os.urandom(SALT_LENGTH)
        fernet = Fernet(_derive_key(secret, salt))
        ciphertext = fernet.encrypt(token.encode("utf-8")).decode("ascii")
        return f"{base64.b64encode(salt).decode('ascii')}:{ciphertext}"

    def decrypt(self, ciphertext: str) -> str:
        secret = self._require_secret()
        try:
            salt_b64, token = ciphertext.split(":", 1)
            salt = base64.b64decode(salt_b64, validate=True)
            return Fernet(_derive_key(secret, salt)).decrypt(token.encode("ascii")).decode("utf-8")
        except (ValueError, binascii.Error, InvalidToken) as e:
            raise ConfigurationError("Stored token could not be decrypted") from e

    @staticmethod
    def is_encrypted(text: Optional[str]) -> bool:
        """Whether text looks like output of encrypt()."""
        if not text or ":" not in text:
            return False
        salt_b64, token = text.split(":", 1)
        try:
            salt = base64.b64decode(salt_b64, validate=True)
            raw = base64.urlsafe_b64decode(token.encode("ascii"))
        except (ValueError, binascii.Error):
            return False
        # Fernet tokens start with version byte 0x80
        return len(salt) == SALT_LENGTH and len(raw) > 0 and raw[0] == 0x80

    def normalize(self, token: Optional[str]) -> Optional[str]:
        """
        Return the token in freshly encrypted form.

        Plaintext (legacy rows, environment values) and ciphertext alike are
        re-encrypted under the current key.
        """
        if not token:
            return None
        plain = self.decrypt(token) if self.is_encrypted(token) else token
        return self.encrypt(plain)

    def reveal(self, token: Optional[str]) -> Optional[str]:
        """Plaintext for a stored token that may or may not be encrypted."""
        if not token:
            return None
        if not self.is_encrypted(token):
            logger.warning("Stored GitHub token is not encrypted")
            return token
        return self.decrypt(token)
