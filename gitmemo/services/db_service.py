"""
Database service layer for the issue mirror.

This module is the durable owner of issues, labels and sync history:
- upsert_issues / upsert_issue: natural-key upsert that preserves created_at
- upsert_labels / upsert_label: natural-key upsert, color/description overwritten
- get_issues / get_issue: paginated reads with the label join
- record_sync / check_sync_status: sync history with retention pruning
- get_latest_config / save_config: saved repository configuration

Any database failure is raised as StoreError; callers decide how to report it.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, and_, cast, delete, func, select, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.exceptions import StoreError
from gitmemo.models import (
    SYNC_HISTORY_LIMIT,
    Issue,
    Label,
    RepoConfig,
    SyncHistory,
    SyncOutcome,
    SyncType,
)
from gitmemo.schemas import IssueData, IssuePage, LabelData, SyncStatusInfo

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

# Shown for label names that have no row in the labels table
PLACEHOLDER_LABEL_COLOR = "ededed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _insert_for(db: AsyncSession):
    dialect = db.bind.dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise StoreError(f"Upsert not supported for database dialect '{dialect}'")


def _labels_contain(db: AsyncSession, names: list[str]):
    """Filter for issues whose label set is a superset of names."""
    if db.bind.dialect.name == "postgresql":
        return cast(Issue.labels, JSONB).contains(names)

    # Labels are a JSON array of strings, so each name appears as a quoted token
    clauses = []
    for name in names:
        token = json.dumps(name)
        token = token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        clauses.append(cast(Issue.labels, String).like(f"%{token}%", escape="\\"))
    return and_(*clauses)


def _placeholder_label(name: str) -> LabelData:
    return LabelData(name=name, color=PLACEHOLDER_LABEL_COLOR, description=None)


def _to_issue_data(row: Issue, label_map: dict[str, LabelData]) -> IssueData:
    return IssueData(
        number=row.issue_number,
        title=row.title,
        body=row.body,
        state=row.state,
        labels=[label_map.get(name) or _placeholder_label(name) for name in (row.labels or [])],
        github_created_at=to_utc(row.github_created_at),
        created_at=to_utc(row.created_at),
        updated_at=to_utc(row.updated_at),
    )


async def _label_map(db: AsyncSession, owner: str, repo: str) -> dict[str, LabelData]:
    result = await db.execute(
        select(Label).where(Label.owner == owner, Label.repo == repo)
    )
    return {row.name: LabelData.model_validate(row) for row in result.scalars().all()}


async def ping(db: AsyncSession) -> None:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise StoreError(f"Database unreachable: {e}") from e


async def commit(db: AsyncSession) -> None:
    """Commit writes made with commit=False."""
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to commit transaction: %s", e)
        raise StoreError(f"Failed to commit: {e}") from e


# ============ ISSUE OPERATIONS ============

async def upsert_issues(
    db: AsyncSession,
    owner: str,
    repo: str,
    issues: list[IssueData],
    now: Optional[datetime] = None,
    commit: bool = True,
) -> int:
    """
    Insert or update issues by (owner, repo, issue_number).

    created_at is immutable: existing rows are looked up first in one query
    and their created_at is carried into the upsert; the conflict clause
    never touches it either, so a row inserted concurrently keeps its own.
    Everything else is written in one batched statement.
    With commit=False the write joins the caller's transaction.

    Returns:
        Number of distinct issues written
    """
    if not issues:
        return 0

    now = now or utcnow()
    # Last occurrence wins when the same number appears twice in a batch
    by_number = {issue.number: issue for issue in issues}

    try:
        result = await db.execute(
            select(Issue.issue_number, Issue.created_at).where(
                Issue.owner == owner,
                Issue.repo == repo,
                Issue.issue_number.in_(list(by_number)),
            )
        )
        existing_created = {number: created for number, created in result.all()}

        rows = [
            {
                "owner": owner,
                "repo": repo,
                "issue_number": issue.number,
                "title": issue.title,
                "body": issue.body,
                "state": issue.state.value,
                "labels": issue.label_names,
                "github_created_at": issue.github_created_at,
                "created_at": existing_created.get(issue.number, now),
                "updated_at": now,
            }
            for issue in by_number.values()
        ]

        insert = _insert_for(db)
        stmt = insert(Issue).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["owner", "repo", "issue_number"],
            set_={
                "title": stmt.excluded.title,
                "body": stmt.excluded.body,
                "state": stmt.excluded.state,
                "labels": stmt.excluded.labels,
                "github_created_at": stmt.excluded.github_created_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)
        if commit:
            await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to upsert %d issues for %s/%s: %s", len(by_number), owner, repo, e)
        raise StoreError(f"Failed to save issues: {e}") from e

    logger.debug(
        "Upserted %d issues for %s/%s (%d new)",
        len(rows), owner, repo, len(rows) - len(existing_created),
    )
    return len(rows)


async def upsert_issue(
    db: AsyncSession,
    owner: str,
    repo: str,
    issue: IssueData,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> None:
    await upsert_issues(db, owner, repo, [issue], now=now, commit=commit)


async def get_issues(
    db: AsyncSession,
    owner: str,
    repo: str,
    page: int = 1,
    labels: Optional[list[str]] = None,
    page_size: int = PAGE_SIZE,
) -> IssuePage:
    """
    Get one page of issues, newest upstream issue first.

    Args:
        db: Database session
        owner: Repository owner
        repo: Repository name
        page: 1-based page number
        labels: Only issues carrying all of these labels
        page_size: Issues per page (default 50)

    Returns:
        IssuePage with label objects joined in and the filtered total
    """
    filters = [Issue.owner == owner, Issue.repo == repo]
    if labels:
        filters.append(_labels_contain(db, labels))

    page = max(page, 1)
    try:
        total = await db.scalar(select(func.count(Issue.id)).where(*filters))
        result = await db.execute(
            select(Issue)
            .where(*filters)
            .order_by(Issue.github_created_at.desc().nulls_last(), Issue.issue_number.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = result.scalars().all()
        label_map = await _label_map(db, owner, repo) if rows else {}
    except SQLAlchemyError as e:
        logger.error("Failed to read issues for %s/%s: %s", owner, repo, e)
        raise StoreError(f"Failed to fetch issues: {e}") from e

    return IssuePage(
        issues=[_to_issue_data(row, label_map) for row in rows],
        total=total or 0,
    )


async def get_issue(db: AsyncSession, owner: str, repo: str, number: int) -> Optional[IssueData]:
    """Get a single issue by number, or None."""
    try:
        row = await db.scalar(
            select(Issue).where(
                Issue.owner == owner, Issue.repo == repo, Issue.issue_number == number
            )
        )
        if row is None:
            return None
        label_map = await _label_map(db, owner, repo)
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to fetch issue #{number}: {e}") from e
    return _to_issue_data(row, label_map)


async def delete_issue(db: AsyncSession, owner: str, repo: str, number: int) -> bool:
    try:
        result = await db.execute(
            delete(Issue).where(
                Issue.owner == owner, Issue.repo == repo, Issue.issue_number == number
            )
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StoreError(f"Failed to delete issue #{number}: {e}") from e
    return result.rowcount > 0


# ============ LABEL OPERATIONS ============

async def upsert_labels(
    db: AsyncSession,
    owner: str,
    repo: str,
    labels: list[LabelData],
    now: Optional[datetime] = None,
    commit: bool = True,
) -> int:
    """Insert or update labels by (owner, repo, name); color and description always overwritten."""
    if not labels:
        return 0

    now = now or utcnow()
    by_name = {label.name: label for label in labels}
    rows = [
        {
            "owner": owner,
            "repo": repo,
            "name": label.name,
            "color": label.color,
            "description": label.description,
            "created_at": now,
            "updated_at": now,
        }
        for label in by_name.values()
    ]

    try:
        insert = _insert_for(db)
        stmt = insert(Label).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["owner", "repo", "name"],
            set_={
                "color": stmt.excluded.color,
                "description": stmt.excluded.description,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)
        if commit:
            await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to upsert %d labels for %s/%s: %s", len(rows), owner, repo, e)
        raise StoreError(f"Failed to save labels: {e}") from e
    return len(rows)


async def upsert_label(
    db: AsyncSession,
    owner: str,
    repo: str,
    label: LabelData,
    now: Optional[datetime] = None,
) -> None:
    await upsert_labels(db, owner, repo, [label], now=now)


async def get_labels(db: AsyncSession, owner: str, repo: str) -> list[LabelData]:
    """Get all labels of a repository ordered by name."""
    try:
        result = await db.execute(
            select(Label).where(Label.owner == owner, Label.repo == repo).order_by(Label.name)
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to fetch labels: {e}") from e
    return [LabelData.model_validate(row) for row in result.scalars().all()]


async def delete_label(db: AsyncSession, owner: str, repo: str, name: str) -> bool:
    try:
        result = await db.execute(
            delete(Label).where(Label.owner == owner, Label.repo == repo, Label.name == name)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StoreError(f"Failed to delete label '{name}': {e}") from e
    return result.rowcount > 0


# ============ SYNC HISTORY ============

async def record_sync(
    db: AsyncSession,
    owner: str,
    repo: str,
    status: SyncOutcome,
    issues_synced: int = 0,
    error_message: Optional[str] = None,
    sync_type: SyncType = SyncType.FULL,
    now: Optional[datetime] = None,
) -> SyncHistory:
    """
    Append a sync record, then prune to the newest SYNC_HISTORY_LIMIT.

    The insert is committed before pruning; a pruning failure is logged and
    does not fail the write.
    """
    record = SyncHistory(
        owner=owner,
        repo=repo,
        status=SyncOutcome(status).value,
        issues_synced=issues_synced,
        error_message=error_message,
        sync_type=SyncType(sync_type).value,
        last_sync_at=now or utcnow(),
    )
    db.add(record)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StoreError(f"Failed to record sync: {e}") from e

    try:
        result = await db.execute(
            select(SyncHistory.id)
            .where(SyncHistory.owner == owner, SyncHistory.repo == repo)
            .order_by(SyncHistory.last_sync_at.desc(), SyncHistory.id.desc())
            .offset(SYNC_HISTORY_LIMIT)
        )
        stale_ids = list(result.scalars().all())
        if stale_ids:
            await db.execute(delete(SyncHistory).where(SyncHistory.id.in_(stale_ids)))
            await db.commit()
            logger.debug("Pruned %d old sync records for %s/%s", len(stale_ids), owner, repo)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("Failed to prune sync history for %s/%s: %s", owner, repo, e)

    record.last_sync_at = to_utc(record.last_sync_at)
    return record


async def check_sync_status(db: AsyncSession, owner: str, repo: str) -> SyncStatusInfo:
    """
    Read the newest sync record of a repository.

    needs_sync is True when there is no record or the newest one failed.
    """
    try:
        latest = await db.scalar(
            select(SyncHistory)
            .where(SyncHistory.owner == owner, SyncHistory.repo == repo)
            .order_by(SyncHistory.last_sync_at.desc(), SyncHistory.id.desc())
            .limit(1)
        )
        if latest is None:
            return SyncStatusInfo(needs_sync=True)

        last_success_at = latest.last_sync_at if latest.status == SyncOutcome.SUCCESS.value else await db.scalar(
            select(SyncHistory.last_sync_at)
            .where(
                SyncHistory.owner == owner,
                SyncHistory.repo == repo,
                SyncHistory.status == SyncOutcome.SUCCESS.value,
            )
            .order_by(SyncHistory.last_sync_at.desc())
            .limit(1)
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to check sync status: {e}") from e

    return SyncStatusInfo(
        needs_sync=latest.status == SyncOutcome.FAILED.value,
        last_sync_at=to_utc(latest.last_sync_at),
        last_success_at=to_utc(last_success_at),
        status=latest.status,
        issues_synced=latest.issues_synced,
    )


async def get_sync_history(db: AsyncSession, owner: str, repo: str) -> list[SyncHistory]:
    """Get retained sync records of a repository, newest first."""
    try:
        result = await db.execute(
            select(SyncHistory)
            .where(SyncHistory.owner == owner, SyncHistory.repo == repo)
            .order_by(SyncHistory.last_sync_at.desc(), SyncHistory.id.desc())
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to fetch sync history: {e}") from e
    return list(result.scalars().all())


# ============ CONFIG ============

async def get_latest_config(db: AsyncSession) -> Optional[RepoConfig]:
    """Get the most recently saved repository configuration."""
    try:
        return await db.scalar(
            select(RepoConfig).order_by(RepoConfig.created_at.desc(), RepoConfig.id.desc()).limit(1)
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to fetch config: {e}") from e


async def save_config(
    db: AsyncSession,
    owner: str,
    repo: str,
    issues_per_page: int = 10,
    token: Optional[str] = None,
    password: Optional[str] = None,
) -> RepoConfig:
    """Save a new configuration row; token must already be encrypted."""
    config = RepoConfig(
        owner=owner,
        repo=repo,
        issues_per_page=issues_per_page,
        token=token,
        password=password,
        created_at=utcnow(),
    )
    db.add(config)
    try:
        await db.commit()
        await db.refresh(config)
    except SQLAlchemyError as e:
        await db.rollback()
        raise StoreError(f"Failed to save configuration: {e}") from e
    return config
