"""
GitHub webhook ingestion.

Verifies the X-Hub-Signature-256 header and applies `issues` and `label`
events to the mirror. Every applied event is logged in sync history with
sync_type "webhook".
"""

import hashlib
import hmac
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.exceptions import AuthorizationError, ConfigurationError, GitMemoError
from gitmemo.models import SyncOutcome, SyncType
from gitmemo.services import db_service
from gitmemo.services.cache import (
    StorageCache,
    issue_key,
    issues_prefix,
    labels_key,
)
from gitmemo.services.github_client import issue_from_api, label_from_api

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
HANDLED_EVENTS = ("issues", "label")


def sign_payload(secret: str, payload: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: Optional[str], payload: bytes, signature: Optional[str]) -> None:
    """Raise AuthorizationError unless signature is the HMAC of payload."""
    if not secret:
        raise ConfigurationError("Webhook secret not configured (set GITHUB_WEBHOOK_SECRET)")
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        raise AuthorizationError("Missing or malformed webhook signature")
    if not hmac.compare_digest(sign_payload(secret, payload), signature):
        raise AuthorizationError("Invalid webhook signature")


def repository_of(event: dict[str, Any]) -> tuple[str, str]:
    repository = event.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    name = repository.get("name")
    if not owner or not name:
        raise GitMemoError("Webhook payload has no repository", code="bad_payload", status_code=400)
    return owner, name


class WebhookProcessor:
    def __init__(self, db: AsyncSession, cache: StorageCache):
        self.db = db
        self.cache = cache

    async def process(self, event_type: str, event: dict[str, Any]) -> dict[str, Any]:
        """
        Apply one event for an already-verified repository.

        Failures are recorded as a failed webhook sync and re-raised.
        """
        owner, repo = repository_of(event)
        if event_type not in HANDLED_EVENTS:
            logger.info("Ignoring webhook event '%s' for %s/%s", event_type, owner, repo)
            return {"handled": False, "event": event_type}

        try:
            if event_type == "issues":
                synced = await self._apply_issue_event(owner, repo, event)
            else:
                synced = await self._apply_label_event(owner, repo, event)
        except Exception as e:
            logger.error("Webhook %s event failed for %s/%s: %s", event_type, owner, repo, e)
            try:
                await self.db.rollback()
                await db_service.record_sync(
                    self.db, owner, repo, SyncOutcome.FAILED,
                    error_message=str(e), sync_type=SyncType.WEBHOOK,
                )
            except Exception as record_error:
                logger.error("Could not record failed webhook sync: %s", record_error)
            raise

        await db_service.record_sync(
            self.db, owner, repo, SyncOutcome.SUCCESS,
            issues_synced=synced, sync_type=SyncType.WEBHOOK,
        )
        return {"handled": True, "event": event_type, "action": event.get("action"), "synced": synced}

    async def _apply_issue_event(self, owner: str, repo: str, event: dict[str, Any]) -> int:
        payload = event.get("issue") or {}
        if not payload.get("number") or not payload.get("title") or not payload.get("state"):
            raise GitMemoError("Missing required issue fields", code="bad_payload", status_code=400)
        if payload.get("pull_request"):
            return 0

        number = payload["number"]
        if event.get("action") == "deleted":
            await db_service.delete_issue(self.db, owner, repo, number)
            synced = 0
        else:
            issue = issue_from_api(payload)
            await db_service.upsert_labels(self.db, owner, repo, issue.labels, commit=False)
            await db_service.upsert_issue(self.db, owner, repo, issue, commit=False)
            await db_service.commit(self.db)
            synced = 1

        self.cache.remove_prefix(issues_prefix(owner, repo))
        self.cache.remove(issue_key(owner, repo, number))
        logger.info("Webhook %s issue #%d in %s/%s", event.get("action"), number, owner, repo)
        return synced

    async def _apply_label_event(self, owner: str, repo: str, event: dict[str, Any]) -> int:
        payload = event.get("label") or {}
        if not payload.get("name"):
            raise GitMemoError("Missing label name", code="bad_payload", status_code=400)

        if event.get("action") == "deleted":
            await db_service.delete_label(self.db, owner, repo, payload["name"])
        else:
            await db_service.upsert_label(self.db, owner, repo, label_from_api(payload))

        self.cache.remove(labels_key(owner, repo))
        self.cache.remove_prefix(issues_prefix(owner, repo))
        logger.info("Webhook %s label '%s' in %s/%s", event.get("action"), payload["name"], owner, repo)
        return 0
