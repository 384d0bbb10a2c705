from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gitmemo.api.deps import get_repo_settings, get_sync_service, require_session
from gitmemo.schemas import LabelData
from gitmemo.services.config_service import RepoSettings
from gitmemo.services.sync_service import SyncService


router = APIRouter(prefix="/labels", tags=["Labels"])


class LabelCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    color: str = Field(..., pattern=r"^#?[0-9a-fA-F]{6}$")
    description: Optional[str] = None


@router.get("", response_model=list[LabelData])
async def list_labels(
    force: bool = Query(False, description="Re-fetch labels from GitHub"),
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    """All labels of the configured repository, ordered by name."""
    return await sync.get_labels(repo_settings.owner, repo_settings.repo, force=force)


@router.post("", response_model=LabelData, status_code=201, dependencies=[Depends(require_session)])
async def create_label(
    request: LabelCreateRequest,
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    return await sync.create_label(
        repo_settings.owner,
        repo_settings.repo,
        name=request.name,
        color=request.color,
        description=request.description,
    )
