"""
Password verification and session capability tokens.

A successful password check returns a signed, time-limited session token.
Write endpoints take that token explicitly instead of trusting a flag kept
on the client.
"""

import base64
import hashlib
import hmac
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from gitmemo.exceptions import AuthorizationError, ConfigurationError

SESSION_TTL_SECONDS = 24 * 60 * 60
SESSION_SUBJECT = b"gitmemo-session"


def _session_key(secret: str) -> bytes:
    # Domain-separated from the token encryption key
    digest = hashlib.sha256(b"gitmemo-session-key:" + secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class SessionAuthority:
    """Checks passwords and issues/validates session tokens."""

    def __init__(self, secret: Optional[str], ttl_seconds: int = SESSION_TTL_SECONDS):
        self._secret = secret
        self.ttl_seconds = ttl_seconds

    def _fernet(self) -> Fernet:
        if not self._secret:
            raise ConfigurationError("Encryption key not configured (set ENCRYPTION_KEY)")
        return Fernet(_session_key(self._secret))

    @staticmethod
    def check_password(candidate: str, expected: Optional[str]) -> bool:
        if not candidate or not expected:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))

    def issue(self) -> str:
        return self._fernet().encrypt(SESSION_SUBJECT).decode("ascii")

    def validate(self, session_token: Optional[str]) -> None:
        """Raise AuthorizationError unless session_token is valid and unexpired."""
        if not session_token:
            raise AuthorizationError("Session token required for write access")
        try:
            subject = self._fernet().decrypt(session_token.encode("ascii"), ttl=self.ttl_seconds)
        except (InvalidToken, ValueError) as e:
            raise AuthorizationError("Session token invalid or expired") from e
        if subject != SESSION_SUBJECT:
            raise AuthorizationError("Session token invalid or expired")
