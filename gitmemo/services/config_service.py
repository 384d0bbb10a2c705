"""
Repository configuration lookup.

Precedence is environment variables over the latest saved config row. The
plaintext token only ever lives in RepoSettings, which stays on the server;
everything handed out carries a freshly encrypted token or none at all.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.config import DEFAULT_ISSUES_PER_PAGE, get_settings
from gitmemo.exceptions import ConfigurationError
from gitmemo.schemas import PublicConfig, ServerConfig
from gitmemo.services import db_service
from gitmemo.services.cache import CONFIG_EXPIRY_MS, StorageCache, config_key
from gitmemo.services.encryption import TokenCipher

logger = logging.getLogger(__name__)


@dataclass
class RepoSettings:
    owner: str
    repo: str
    issues_per_page: int = DEFAULT_ISSUES_PER_PAGE
    token: Optional[str] = None  # plaintext

    @property
    def has_token(self) -> bool:
        return bool(self.token)


async def load_repo_settings(db: AsyncSession, cipher: Optional[TokenCipher] = None) -> RepoSettings:
    """
    Resolve the active repository and its credentials.

    Raises:
        ConfigurationError: neither the environment nor the store names a repository
    """
    settings = get_settings()
    if settings.github_owner and settings.github_repo:
        logger.debug(
            "Using environment config for %s/%s (has_token=%s)",
            settings.github_owner, settings.github_repo, bool(settings.github_token),
        )
        return RepoSettings(
            owner=settings.github_owner,
            repo=settings.github_repo,
            token=settings.github_token,
        )

    row = await db_service.get_latest_config(db)
    if row is None:
        raise ConfigurationError("No repository configured (set GITHUB_OWNER and GITHUB_REPO)")

    token = None
    if row.token:
        cipher = cipher or TokenCipher.from_settings()
        try:
            token = cipher.reveal(row.token)
        except ConfigurationError as e:
            # Key rotated or unset: reads still work, writes need a new token
            logger.warning("Ignoring stored token for %s/%s: %s", row.owner, row.repo, e)

    logger.debug("Using stored config for %s/%s (has_token=%s)", row.owner, row.repo, bool(token))
    return RepoSettings(
        owner=row.owner,
        repo=row.repo,
        issues_per_page=row.issues_per_page or DEFAULT_ISSUES_PER_PAGE,
        token=token,
    )


async def get_server_config(db: AsyncSession, cipher: Optional[TokenCipher] = None) -> ServerConfig:
    """Config for server-side callers; the token is re-encrypted on every call."""
    cipher = cipher or TokenCipher.from_settings()
    repo_settings = await load_repo_settings(db, cipher)
    return ServerConfig(
        owner=repo_settings.owner,
        repo=repo_settings.repo,
        issues_per_page=repo_settings.issues_per_page,
        token=cipher.normalize(repo_settings.token),
    )


async def get_public_config(db: AsyncSession, cache: StorageCache) -> PublicConfig:
    cached = cache.get(config_key())
    if cached is not None:
        return PublicConfig.model_validate(cached)

    repo_settings = await load_repo_settings(db)
    public = PublicConfig(
        owner=repo_settings.owner,
        repo=repo_settings.repo,
        issues_per_page=repo_settings.issues_per_page,
    )
    cache.set(config_key(), public.model_dump(), expiry=CONFIG_EXPIRY_MS)
    return public


async def save_repo_config(
    db: AsyncSession,
    cache: StorageCache,
    owner: str,
    repo: str,
    issues_per_page: int = DEFAULT_ISSUES_PER_PAGE,
    cipher: Optional[TokenCipher] = None,
) -> PublicConfig:
    """
    Persist a repository config.

    The token is never accepted from the caller; the environment token is
    stored encrypted when one is set.
    """
    settings = get_settings()
    token = None
    if settings.github_token:
        cipher = cipher or TokenCipher.from_settings()
        token = cipher.encrypt(settings.github_token)

    row = await db_service.save_config(
        db,
        owner=owner,
        repo=repo,
        issues_per_page=issues_per_page,
        token=token,
        password=settings.password,
    )
    cache.remove(config_key())
    logger.info("Saved config for %s/%s (has_token=%s)", owner, repo, bool(token))
    return PublicConfig(owner=row.owner, repo=row.repo, issues_per_page=row.issues_per_page)


async def resolve_password(db: AsyncSession) -> Optional[str]:
    """Password guarding writes: environment first, then the latest config row."""
    settings = get_settings()
    if settings.password:
        return settings.password
    row = await db_service.get_latest_config(db)
    return row.password if row is not None else None
