"""Config precedence and token normalization."""

import pytest

from gitmemo.exceptions import ConfigurationError, MissingTokenError
from gitmemo.services import config_service, db_service
from gitmemo.services.cache import config_key
from gitmemo.services.encryption import TokenCipher
from gitmemo.services.sync_service import SyncService

from conftest import make_issue

SECRET = "config-secret"


@pytest.fixture
def cipher(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", SECRET)
    return TokenCipher(SECRET)


@pytest.mark.asyncio
async def test_nothing_configured(db):
    with pytest.raises(ConfigurationError):
        await config_service.load_repo_settings(db)


@pytest.mark.asyncio
async def test_environment_wins_over_store(db, monkeypatch, cipher):
    await db_service.save_config(db, "stored", "repo", token=cipher.encrypt("ghp_stored"))
    monkeypatch.setenv("GITHUB_OWNER", "env-owner")
    monkeypatch.setenv("GITHUB_REPO", "env-repo")
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")

    settings = await config_service.load_repo_settings(db)

    assert (settings.owner, settings.repo, settings.token) == ("env-owner", "env-repo", "ghp_env")


@pytest.mark.asyncio
async def test_environment_without_token_is_read_only(db, monkeypatch):
    monkeypatch.setenv("GITHUB_OWNER", "env-owner")
    monkeypatch.setenv("GITHUB_REPO", "env-repo")

    settings = await config_service.load_repo_settings(db)

    assert settings.has_token is False


@pytest.mark.asyncio
async def test_stored_token_is_decrypted_for_use(db, cipher):
    await db_service.save_config(db, "octo", "memos", issues_per_page=20, token=cipher.encrypt("ghp_stored"))

    settings = await config_service.load_repo_settings(db)

    assert settings.token == "ghp_stored"
    assert settings.issues_per_page == 20


@pytest.mark.asyncio
async def test_server_config_reencrypts_every_time(db, cipher):
    stored = cipher.encrypt("ghp_stored")
    await db_service.save_config(db, "octo", "memos", token=stored)

    first = await config_service.get_server_config(db)
    second = await config_service.get_server_config(db)

    assert first.token != stored
    assert first.token != second.token
    assert cipher.decrypt(first.token) == "ghp_stored"


@pytest.mark.asyncio
async def test_server_config_encrypts_legacy_plaintext(db, cipher):
    await db_service.save_config(db, "octo", "memos", token="ghp_plain")

    config = await config_service.get_server_config(db)

    assert TokenCipher.is_encrypted(config.token)
    assert cipher.decrypt(config.token) == "ghp_plain"


@pytest.mark.asyncio
async def test_public_config_is_cached_without_token(db, cache, cipher):
    await db_service.save_config(db, "octo", "memos", token=cipher.encrypt("ghp_stored"))

    public = await config_service.get_public_config(db, cache)

    assert public.model_dump() == {"owner": "octo", "repo": "memos", "issues_per_page": 10}
    assert cache.get(config_key()) == public.model_dump()


@pytest.mark.asyncio
async def test_save_stores_environment_token_encrypted(db, cache, monkeypatch, cipher):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
    cache.set(config_key(), {"owner": "old", "repo": "old", "issues_per_page": 10})

    saved = await config_service.save_repo_config(db, cache, "octo", "memos", issues_per_page=30)

    row = await db_service.get_latest_config(db)
    assert saved.owner == "octo"
    assert TokenCipher.is_encrypted(row.token)
    assert cipher.decrypt(row.token) == "ghp_env"
    assert cache.get(config_key()) is None


@pytest.mark.asyncio
async def test_password_resolution(db, monkeypatch):
    assert await config_service.resolve_password(db) is None

    await db_service.save_config(db, "octo", "memos", password="stored-pw")
    assert await config_service.resolve_password(db) == "stored-pw"

    monkeypatch.setenv("GITMEMO_PASSWORD", "env-pw")
    assert await config_service.resolve_password(db) == "env-pw"


@pytest.mark.asyncio
async def test_token_under_rotated_key_falls_back_to_read_only(db, cache, monkeypatch):
    await db_service.save_config(db, "octo", "memos", token=TokenCipher("old-key").encrypt("ghp_stored"))
    await db_service.upsert_issue(db, "octo", "memos", make_issue(1))
    monkeypatch.setenv("ENCRYPTION_KEY", "new-key")

    settings = await config_service.load_repo_settings(db)

    assert (settings.owner, settings.repo, settings.has_token) == ("octo", "memos", False)
    service = SyncService(db, cache, remote=None)
    assert [i.number for i in (await service.get_issues("octo", "memos")).issues] == [1]
    with pytest.raises(MissingTokenError):
        await service.create_issue("octo", "memos", title="Blocked")


@pytest.mark.asyncio
async def test_encrypted_token_without_any_key_is_ignored(db):
    await db_service.save_config(db, "octo", "memos", token=TokenCipher("old-key").encrypt("ghp_stored"))

    settings = await config_service.load_repo_settings(db)

    assert settings.token is None
