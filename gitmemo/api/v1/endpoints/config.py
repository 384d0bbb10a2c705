"""
Repository configuration endpoints.

The public variant never carries a token. The server variant carries the
token as freshly encrypted ciphertext and needs a session.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.api.deps import get_cache, require_session
from gitmemo.config import DEFAULT_ISSUES_PER_PAGE
from gitmemo.database import get_db
from gitmemo.schemas import PublicConfig, ServerConfig
from gitmemo.services import config_service
from gitmemo.services.cache import StorageCache


router = APIRouter(prefix="/config", tags=["Config"])


class ConfigSaveRequest(BaseModel):
    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    issues_per_page: int = Field(DEFAULT_ISSUES_PER_PAGE, ge=1, le=100)


@router.get("", response_model=PublicConfig)
async def get_config(
    db: AsyncSession = Depends(get_db),
    cache: StorageCache = Depends(get_cache),
):
    return await config_service.get_public_config(db, cache)


@router.get("/server", response_model=ServerConfig, dependencies=[Depends(require_session)])
async def get_server_config(db: AsyncSession = Depends(get_db)):
    return await config_service.get_server_config(db)


@router.post("", response_model=PublicConfig, status_code=201, dependencies=[Depends(require_session)])
async def save_config(
    request: ConfigSaveRequest,
    db: AsyncSession = Depends(get_db),
    cache: StorageCache = Depends(get_cache),
):
    """
    Save the repository to mirror.

    The GitHub token is taken from the server environment and stored
    encrypted; it is never accepted in the request body.
    """
    return await config_service.save_repo_config(
        db,
        cache,
        owner=request.owner,
        repo=request.repo,
        issues_per_page=request.issues_per_page,
    )
