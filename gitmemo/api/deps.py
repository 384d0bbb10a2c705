"""
FastAPI dependencies shared by the v1 endpoints.

The cache and the GitHub client factory live on app.state so the
application builds them once and tests can swap them.
"""

import logging
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.config import get_settings
from gitmemo.database import get_db
from gitmemo.services import config_service
from gitmemo.services.auth_service import SessionAuthority
from gitmemo.services.cache import StorageCache
from gitmemo.services.config_service import RepoSettings
from gitmemo.services.sync_service import SyncService

logger = logging.getLogger(__name__)


def get_cache(request: Request) -> StorageCache:
    return request.app.state.cache


def get_session_authority() -> SessionAuthority:
    return SessionAuthority(get_settings().encryption_key)


async def get_repo_settings(db: AsyncSession = Depends(get_db)) -> RepoSettings:
    return await config_service.load_repo_settings(db)


async def get_sync_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: StorageCache = Depends(get_cache),
    repo_settings: RepoSettings = Depends(get_repo_settings),
) -> AsyncIterator[SyncService]:
    """
    Orchestrator for one request.

    Without a token the orchestrator runs read-only; the GitHub client is
    closed when the request finishes.
    """
    remote = None
    if repo_settings.has_token:
        remote = request.app.state.remote_factory(repo_settings.token)
    else:
        logger.debug("No GitHub token for %s/%s, read-only mode", repo_settings.owner, repo_settings.repo)

    try:
        yield SyncService(db, cache, remote)
    finally:
        if remote is not None:
            await remote.close()


async def require_session(
    x_session_token: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    authority: SessionAuthority = Depends(get_session_authority),
) -> None:
    """Guard for write endpoints; a no-op when no password is configured."""
    if not await config_service.resolve_password(db):
        return
    authority.validate(x_session_token)
