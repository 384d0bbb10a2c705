"""
Reconciliation between the local cache, the persisted mirror and GitHub.

Issue pages are served through a tiered lookup:

    CHECK_SYNC_STATUS -> DECIDE_MODE -> TRY_CACHE -> TRY_STORE -> FETCH_REMOTE -> PERSIST

A full sync happens when forced or when the repository has never synced
successfully. Otherwise the cache and the store are consulted first and
GitHub is only asked for issues changed since the last successful sync.

Within one reconciliation the store is written before the cache, and the
cache before the sync record, so the disposable cache is never ahead of the
durable store.
"""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.exceptions import MissingTokenError, NotFoundError, SyncError
from gitmemo.models import SyncOutcome, SyncType
from gitmemo.schemas import IssueData, IssuesResult, LabelData, SyncSummary
from gitmemo.services import db_service
from gitmemo.services.cache import (
    ISSUES_EXPIRY_MS,
    LABELS_EXPIRY_MS,
    StorageCache,
    issue_key,
    issues_key,
    issues_prefix,
    labels_key,
)

logger = logging.getLogger(__name__)


def parse_labels(labels: Optional[str]) -> list[str]:
    """Split a comma-separated label filter, dropping blanks."""
    if not labels:
        return []
    return [name.strip() for name in labels.split(",") if name.strip()]


def _labels_of(issues: list[IssueData]) -> list[LabelData]:
    seen: dict[str, LabelData] = {}
    for issue in issues:
        for label in issue.labels:
            seen[label.name] = label
    return list(seen.values())


def _dump(issues: list[IssueData]) -> list[dict[str, Any]]:
    return [issue.model_dump(mode="json") for issue in issues]


class SyncService:
    """
    Orchestrates reads and writes for one request.

    Args:
        db: Request-scoped database session
        cache: Process-wide cache instance
        remote: GitHub client, or None for read-only mode (no token)
    """

    def __init__(self, db: AsyncSession, cache: StorageCache, remote=None):
        self.db = db
        self.cache = cache
        self.remote = remote

    @property
    def read_only(self) -> bool:
        return self.remote is None

    def _require_remote(self, owner: str, repo: str):
        if self.remote is None:
            raise MissingTokenError(
                f"A GitHub token is required for this operation on {owner}/{repo}"
            )
        return self.remote

    # ============ ISSUE LISTS ============

    async def get_issues(
        self,
        owner: str,
        repo: str,
        page: int = 1,
        labels: Optional[str] = None,
        force_full_sync: bool = False,
    ) -> IssuesResult:
        label_names = parse_labels(labels)
        label_filter = ",".join(label_names) or None
        key = issues_key(owner, repo, page, label_filter)

        if self.read_only:
            if force_full_sync:
                self._require_remote(owner, repo)
            return await self._serve_local(owner, repo, page, label_names, key)

        sync_type = SyncType.FULL
        try:
            status = await db_service.check_sync_status(self.db, owner, repo)
            is_full = force_full_sync or status.last_success_at is None
            sync_type = SyncType.FULL if is_full else SyncType.ADD

            # A failed latest sync must not be papered over by older local data
            if not is_full and not status.needs_sync:
                cached = self.cache.get(key)
                if cached is not None:
                    issues = [IssueData.model_validate(item) for item in cached]
                    logger.info("Serving %d issues for %s/%s page %d from cache", len(issues), owner, repo, page)
                    return await self._respond(owner, repo, issues, 0, SyncType.ADD)

                stored = await db_service.get_issues(self.db, owner, repo, page, label_names)
                if stored.issues:
                    self.cache.set(key, _dump(stored.issues), expiry=ISSUES_EXPIRY_MS)
                    logger.info("Serving %d issues for %s/%s page %d from store", len(stored.issues), owner, repo, page)
                    return await self._respond(owner, repo, stored.issues, 0, SyncType.ADD)

            # Filtered pages are always fetched whole
            since = None if is_full or label_names else status.last_success_at
            sync_type = SyncType.ADD if since else SyncType.FULL
            logger.info(
                "%s sync of %s/%s page %d%s",
                "Incremental" if since else "Full", owner, repo, page,
                f" since {since.isoformat()}" if since else "",
            )
            fetched = await self.remote.list_issues(
                owner, repo, page=page, labels=label_filter, since=since
            )

            if not fetched:
                if since is not None:
                    logger.info("No changes on %s/%s since %s", owner, repo, since.isoformat())
                return await self._respond(owner, repo, [], 0, sync_type)

            synced = await self._persist(owner, repo, fetched)
            stored = await db_service.get_issues(self.db, owner, repo, page, label_names)
            # Other pages may have shifted, so only the page just read back stays cached
            self.cache.remove_prefix(issues_prefix(owner, repo))
            self.cache.set(key, _dump(stored.issues), expiry=ISSUES_EXPIRY_MS)
            return await self._respond(owner, repo, stored.issues, synced, sync_type)
        except Exception as e:
            await self._record_failure(owner, repo, e, sync_type)
            raise SyncError(f"Failed to sync issues for {owner}/{repo}: {e}") from e

    async def _serve_local(
        self, owner: str, repo: str, page: int, label_names: list[str], key: str
    ) -> IssuesResult:
        """Cache then store, no sync record."""
        cached = self.cache.get(key)
        if cached is not None:
            return IssuesResult(issues=[IssueData.model_validate(item) for item in cached])

        stored = await db_service.get_issues(self.db, owner, repo, page, label_names)
        if stored.issues:
            self.cache.set(key, _dump(stored.issues), expiry=ISSUES_EXPIRY_MS)
        logger.info("Read-only mode: served %d issues for %s/%s", len(stored.issues), owner, repo)
        return IssuesResult(issues=stored.issues)

    async def _persist(self, owner: str, repo: str, issues: list[IssueData]) -> int:
        """Labels and issues land in one transaction."""
        labels = _labels_of(issues)
        await db_service.upsert_labels(self.db, owner, repo, labels, commit=False)
        synced = await db_service.upsert_issues(self.db, owner, repo, issues, commit=False)
        await db_service.commit(self.db)
        if labels:
            self.cache.remove(labels_key(owner, repo))
        return synced

    async def _respond(
        self,
        owner: str,
        repo: str,
        issues: list[IssueData],
        synced: int,
        sync_type: SyncType,
    ) -> IssuesResult:
        record = await db_service.record_sync(
            self.db, owner, repo, SyncOutcome.SUCCESS, issues_synced=synced, sync_type=sync_type
        )
        if synced:
            logger.info("Synced %d issues for %s/%s (%s)", synced, owner, repo, sync_type.value)
        return IssuesResult(
            issues=issues,
            sync_status=SyncSummary(success=True, total_synced=synced, last_sync_at=record.last_sync_at),
        )

    async def _record_failure(self, owner: str, repo: str, error: Exception, sync_type: SyncType) -> None:
        logger.error("Sync failed for %s/%s: %s", owner, repo, error)
        try:
            await self.db.rollback()
            await db_service.record_sync(
                self.db, owner, repo, SyncOutcome.FAILED,
                error_message=str(error), sync_type=sync_type,
            )
        except Exception as record_error:
            logger.error("Could not record failed sync for %s/%s: %s", owner, repo, record_error)

    # ============ SINGLE ISSUES ============

    async def get_issue(self, owner: str, repo: str, number: int) -> IssueData:
        key = issue_key(owner, repo, number)
        cached = self.cache.get(key)
        if cached is not None:
            return IssueData.model_validate(cached)

        if self.read_only:
            issue = await db_service.get_issue(self.db, owner, repo, number)
            if issue is None:
                raise NotFoundError(f"Issue #{number} not found in {owner}/{repo}")
        else:
            fetched = await self.remote.get_issue(owner, repo, number)
            issue = await self._store_issue(owner, repo, fetched)

        self.cache.set(key, issue.model_dump(mode="json"), expiry=ISSUES_EXPIRY_MS)
        return issue

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: Optional[str] = None,
        labels: Optional[list[str]] = None,
    ) -> IssueData:
        remote = self._require_remote(owner, repo)
        created = await remote.create_issue(owner, repo, title=title, body=body, labels=labels or [])
        issue = await self._store_issue(owner, repo, created)
        self._refresh_issue_cache(owner, repo, issue)
        logger.info("Created issue #%d in %s/%s", issue.number, owner, repo)
        return issue

    async def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[list[str]] = None,
    ) -> IssueData:
        remote = self._require_remote(owner, repo)
        updated = await remote.update_issue(owner, repo, number, title=title, body=body, labels=labels)
        issue = await self._store_issue(owner, repo, updated)
        self._refresh_issue_cache(owner, repo, issue)
        logger.info("Updated issue #%d in %s/%s", number, owner, repo)
        return issue

    async def _store_issue(self, owner: str, repo: str, issue: IssueData) -> IssueData:
        """Upsert an issue and its labels, then read it back with created_at and the label join."""
        try:
            await db_service.upsert_labels(self.db, owner, repo, issue.labels, commit=False)
            await db_service.upsert_issue(self.db, owner, repo, issue, commit=False)
            await db_service.commit(self.db)
        except Exception:
            await self.db.rollback()
            raise
        stored = await db_service.get_issue(self.db, owner, repo, issue.number)
        return stored or issue

    def _refresh_issue_cache(self, owner: str, repo: str, issue: IssueData) -> None:
        self.cache.remove_prefix(issues_prefix(owner, repo))
        self.cache.remove(labels_key(owner, repo))
        self.cache.set(issue_key(owner, repo, issue.number), issue.model_dump(mode="json"), expiry=ISSUES_EXPIRY_MS)

    # ============ LABELS ============

    async def get_labels(self, owner: str, repo: str, force: bool = False) -> list[LabelData]:
        key = labels_key(owner, repo)
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return [LabelData.model_validate(item) for item in cached]

            stored = await db_service.get_labels(self.db, owner, repo)
            if stored or self.read_only:
                if stored:
                    self.cache.set(key, [label.model_dump() for label in stored], expiry=LABELS_EXPIRY_MS)
                return stored

        remote = self._require_remote(owner, repo)
        fetched = await remote.list_labels(owner, repo)
        await db_service.upsert_labels(self.db, owner, repo, fetched)
        stored = await db_service.get_labels(self.db, owner, repo)
        self.cache.set(key, [label.model_dump() for label in stored], expiry=LABELS_EXPIRY_MS)
        logger.info("Fetched %d labels for %s/%s", len(fetched), owner, repo)
        return stored

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        color: str,
        description: Optional[str] = None,
    ) -> LabelData:
        remote = self._require_remote(owner, repo)
        label = await remote.create_label(owner, repo, name=name, color=color, description=description)
        await db_service.upsert_label(self.db, owner, repo, label)
        self.cache.remove(labels_key(owner, repo))
        # Issue pages embed label colours
        self.cache.remove_prefix(issues_prefix(owner, repo))
        logger.info("Created label '%s' in %s/%s", label.name, owner, repo)
        return label
