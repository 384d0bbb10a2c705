"""
GitHub webhook receiver.

Configure the repository webhook with content type application/json, the
same secret as GITHUB_WEBHOOK_SECRET, and the "Issues" and "Labels" events.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.api.deps import get_cache, get_repo_settings
from gitmemo.config import get_settings
from gitmemo.database import get_db
from gitmemo.exceptions import GitMemoError, NotFoundError
from gitmemo.services.cache import StorageCache
from gitmemo.services.config_service import RepoSettings
from gitmemo.services.webhook_service import WebhookProcessor, repository_of, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhook"])


@router.post("/github")
async def github_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    cache: StorageCache = Depends(get_cache),
    repo_settings: RepoSettings = Depends(get_repo_settings),
):
    """
    Apply an issues or label event to the mirror.

    - 401 when the signature does not match
    - 404 when the event is for a repository other than the configured one
    """
    payload = await request.body()
    verify_signature(get_settings().webhook_secret, payload, x_hub_signature_256)

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise GitMemoError("Webhook body is not valid JSON", code="bad_payload", status_code=400) from e

    if x_github_event == "ping":
        logger.info("Webhook ping received (zen: %s)", event.get("zen"))
        return {"success": True, "event": "ping"}

    owner, repo = repository_of(event)
    if (owner.lower(), repo.lower()) != (repo_settings.owner.lower(), repo_settings.repo.lower()):
        raise NotFoundError(f"Repository {owner}/{repo} is not configured")

    result = await WebhookProcessor(db, cache).process(x_github_event or "", event)
    return {"success": True, **result}
