"""
Generic GitHub operation endpoint.

Only the operations listed in OPERATIONS can be invoked; each goes through
the orchestrator so the mirror stays in step with GitHub.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.api.deps import (
    get_repo_settings,
    get_session_authority,
    get_sync_service,
    require_session,
)
from gitmemo.database import get_db
from gitmemo.exceptions import GitMemoError
from gitmemo.services.auth_service import SessionAuthority
from gitmemo.services.config_service import RepoSettings
from gitmemo.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/github", tags=["GitHub"])


class ListIssuesParams(BaseModel):
    page: int = Field(1, ge=1)
    labels: Optional[str] = None
    force_full_sync: bool = False


class CreateIssueParams(BaseModel):
    title: str = Field(..., min_length=1)
    body: Optional[str] = ""
    labels: list[str] = Field(default_factory=list)


class UpdateIssueParams(BaseModel):
    number: int
    title: Optional[str] = None
    body: Optional[str] = None
    labels: Optional[list[str]] = None


class ListLabelsParams(BaseModel):
    force: bool = False


class CreateLabelParams(BaseModel):
    name: str = Field(..., min_length=1)
    color: str = Field(..., pattern=r"^#?[0-9a-fA-F]{6}$")
    description: Optional[str] = None


async def _list_issues(sync: SyncService, owner: str, repo: str, params: ListIssuesParams):
    return await sync.get_issues(
        owner, repo, page=params.page, labels=params.labels, force_full_sync=params.force_full_sync
    )


async def _create_issue(sync: SyncService, owner: str, repo: str, params: CreateIssueParams):
    return await sync.create_issue(owner, repo, title=params.title, body=params.body, labels=params.labels)


async def _update_issue(sync: SyncService, owner: str, repo: str, params: UpdateIssueParams):
    return await sync.update_issue(
        owner, repo, params.number, title=params.title, body=params.body, labels=params.labels
    )


async def _list_labels(sync: SyncService, owner: str, repo: str, params: ListLabelsParams):
    return await sync.get_labels(owner, repo, force=params.force)


async def _create_label(sync: SyncService, owner: str, repo: str, params: CreateLabelParams):
    return await sync.create_label(
        owner, repo, name=params.name, color=params.color, description=params.description
    )


# operation -> (params model, handler, needs a session)
OPERATIONS = {
    "list_issues": (ListIssuesParams, _list_issues, False),
    "create_issue": (CreateIssueParams, _create_issue, True),
    "update_issue": (UpdateIssueParams, _update_issue, True),
    "list_labels": (ListLabelsParams, _list_labels, False),
    "create_label": (CreateLabelParams, _create_label, True),
}


class OperationRequest(BaseModel):
    operation: str
    params: dict[str, Any] = Field(default_factory=dict)


class OperationResponse(BaseModel):
    operation: str
    data: Any


def _resolve(operation: str):
    if operation not in OPERATIONS:
        raise GitMemoError(
            f"Unsupported operation '{operation}'. Supported: {', '.join(sorted(OPERATIONS))}",
            code="unsupported_operation",
            status_code=400,
        )
    return OPERATIONS[operation]


@router.post("", response_model=OperationResponse)
async def call_operation(
    request: OperationRequest,
    x_session_token: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    authority: SessionAuthority = Depends(get_session_authority),
    repo_settings: RepoSettings = Depends(get_repo_settings),
    sync: SyncService = Depends(get_sync_service),
):
    """
    Run one allow-listed GitHub operation against the configured repository.

    **Example:**
    ```
    POST /api/v1/github
    {"operation": "list_issues", "params": {"page": 2}}
    ```
    """
    params_model, handler, writes = _resolve(request.operation)
    if writes:
        await require_session(x_session_token, db, authority)

    try:
        params = params_model.model_validate(request.params)
    except ValidationError as e:
        raise GitMemoError(
            f"Invalid params for {request.operation}: {e.errors()}",
            code="invalid_params",
            status_code=400,
        ) from e

    logger.debug("GitHub operation %s on %s/%s", request.operation, repo_settings.owner, repo_settings.repo)
    data = await handler(sync, repo_settings.owner, repo_settings.repo, params)
    return OperationResponse(operation=request.operation, data=data)
