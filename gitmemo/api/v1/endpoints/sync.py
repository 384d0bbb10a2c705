"""
Sync history endpoints.

Exposes the sync status tracker so clients can show when the mirror last
caught up with GitHub.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.api.deps import get_repo_settings
from gitmemo.database import get_db
from gitmemo.schemas import SyncStatusInfo
from gitmemo.services import db_service
from gitmemo.services.config_service import RepoSettings


router = APIRouter(prefix="/sync", tags=["Sync"])


class SyncRecordResponse(BaseModel):
    id: int
    status: str
    issues_synced: int
    error_message: Optional[str]
    sync_type: str
    last_sync_at: datetime

    class Config:
        from_attributes = True


class SyncHistoryResponse(BaseModel):
    owner: str
    repo: str
    records: list[SyncRecordResponse]


@router.get("/status", response_model=SyncStatusInfo)
async def get_sync_status(
    repo_settings: RepoSettings = Depends(get_repo_settings),
    db: AsyncSession = Depends(get_db),
):
    """Latest sync record; `needs_sync` is true when none exists or the latest one failed."""
    return await db_service.check_sync_status(db, repo_settings.owner, repo_settings.repo)


@router.get("/history", response_model=SyncHistoryResponse)
async def get_sync_history(
    repo_settings: RepoSettings = Depends(get_repo_settings),
    db: AsyncSession = Depends(get_db),
):
    records = await db_service.get_sync_history(db, repo_settings.owner, repo_settings.repo)
    return SyncHistoryResponse(
        owner=repo_settings.owner,
        repo=repo_settings.repo,
        records=[SyncRecordResponse.model_validate(record) for record in records],
    )
