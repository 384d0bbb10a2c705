"""
Issue endpoints for the configured repository.

Reads go through the tiered lookup (cache, store, GitHub); writes go to
GitHub first and are then mirrored.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gitmemo.api.deps import get_repo_settings, get_sync_service, require_session
from gitmemo.schemas import IssueData, IssuesResult
from gitmemo.services.config_service import RepoSettings
from gitmemo.services.sync_service import SyncService


router = APIRouter(prefix="/issues", tags=["Issues"])


# ============ Request Schemas ============

class IssueCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    body: Optional[str] = ""
    labels: list[str] = Field(default_factory=list)


class IssueUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    body: Optional[str] = None
    labels: Optional[list[str]] = None


# ============ ENDPOINTS ============

@router.get("", response_model=IssuesResult)
async def list_issues(
    page: int = Query(1, ge=1, description="1-based page number"),
    labels: Optional[str] = Query(None, description="Comma-separated label names; issues must carry all"),
    force_full_sync: bool = Query(False, description="Re-fetch the page from GitHub"),
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    """
    List issues, newest first.

    **Example:**
    ```
    GET /api/v1/issues?page=1&labels=idea,todo
    ```

    `sync_status` is null when the request was served without a GitHub token.
    """
    return await sync.get_issues(
        repo_settings.owner,
        repo_settings.repo,
        page=page,
        labels=labels,
        force_full_sync=force_full_sync,
    )


@router.get("/{number}", response_model=IssueData)
async def get_issue(
    number: int,
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    return await sync.get_issue(repo_settings.owner, repo_settings.repo, number)


@router.post("", response_model=IssueData, status_code=201, dependencies=[Depends(require_session)])
async def create_issue(
    request: IssueCreateRequest,
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    """Create an issue on GitHub and mirror it. Needs a token."""
    return await sync.create_issue(
        repo_settings.owner,
        repo_settings.repo,
        title=request.title,
        body=request.body,
        labels=request.labels,
    )


@router.patch("/{number}", response_model=IssueData, dependencies=[Depends(require_session)])
async def update_issue(
    number: int,
    request: IssueUpdateRequest,
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    return await sync.update_issue(
        repo_settings.owner,
        repo_settings.repo,
        number,
        title=request.title,
        body=request.body,
        labels=request.labels,
    )
