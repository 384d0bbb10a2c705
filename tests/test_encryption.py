"""Token cipher and session token tests."""

import pytest

from gitmemo.exceptions import AuthorizationError, ConfigurationError
from gitmemo.services.auth_service import SessionAuthority
from gitmemo.services.encryption import TokenCipher

SECRET = "server-side-secret"


@pytest.fixture
def cipher():
    return TokenCipher(SECRET)


class TestTokenCipher:
    def test_round_trip_with_fresh_salt(self, cipher):
        first = cipher.encrypt("ghp_abc")
        second = cipher.encrypt("ghp_abc")

        assert first != second
        assert cipher.decrypt(first) == cipher.decrypt(second) == "ghp_abc"

    def test_is_encrypted(self, cipher):
        assert TokenCipher.is_encrypted(cipher.encrypt("ghp_abc")) is True
        assert TokenCipher.is_encrypted("ghp_abc") is False
        assert TokenCipher.is_encrypted("abc:def") is False
        assert TokenCipher.is_encrypted(None) is False

    def test_wrong_key_fails_cleanly(self, cipher):
        ciphertext = cipher.encrypt("ghp_abc")

        with pytest.raises(ConfigurationError):
            TokenCipher("another-secret").decrypt(ciphertext)

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError):
            TokenCipher(None).encrypt("ghp_abc")

    def test_normalize_reencrypts_plain_and_cipher(self, cipher):
        from_plain = cipher.normalize("ghp_abc")
        from_cipher = cipher.normalize(from_plain)

        assert TokenCipher.is_encrypted(from_plain)
        assert from_cipher != from_plain
        assert cipher.decrypt(from_cipher) == "ghp_abc"
        assert cipher.normalize(None) is None

    def test_reveal_accepts_legacy_plaintext(self, cipher):
        assert cipher.reveal("ghp_legacy") == "ghp_legacy"
        assert cipher.reveal(cipher.encrypt("ghp_abc")) == "ghp_abc"


class TestSessionAuthority:
    def test_issue_and_validate(self):
        authority = SessionAuthority(SECRET)

        authority.validate(authority.issue())

    def test_rejects_missing_and_foreign_tokens(self):
        authority = SessionAuthority(SECRET)

        with pytest.raises(AuthorizationError):
            authority.validate(None)
        with pytest.raises(AuthorizationError):
            authority.validate("not-a-token")
        with pytest.raises(AuthorizationError):
            authority.validate(SessionAuthority("other").issue())

    def test_expired_token(self):
        authority = SessionAuthority(SECRET, ttl_seconds=-1)

        with pytest.raises(AuthorizationError):
            authority.validate(authority.issue())

    def test_check_password(self):
        assert SessionAuthority.check_password("hunter2", "hunter2") is True
        assert SessionAuthority.check_password("hunter3", "hunter2") is False
        assert SessionAuthority.check_password("hunter2", None) is False
