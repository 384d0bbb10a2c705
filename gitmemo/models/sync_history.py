"""
SyncHistory model - append-only log of synchronization attempts.

Used to decide between full and incremental sync:
- no record yet, or no successful record -> full sync
- otherwise -> incremental sync since the last successful record

At most SYNC_HISTORY_LIMIT rows are kept per (owner, repo).
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Index

from gitmemo.database import Base

SYNC_HISTORY_LIMIT = 20


class SyncOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class SyncType(str, enum.Enum):
    """How the mirror was brought up to date."""
    FULL = "full"
    ADD = "add"  # incremental
    WEBHOOK = "webhook"


class SyncHistory(Base):
    """
    One synchronization attempt for a repository.

    Persists across server restarts, unlike in-memory variables.
    """
    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True)
    owner = Column(String(255), nullable=False)
    repo = Column(String(255), nullable=False)
    status = Column(String(10), nullable=False)
    issues_synced = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    sync_type = Column(String(10), nullable=False, default=SyncType.FULL.value)
    last_sync_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_sync_history_repo_time", "owner", "repo", "last_sync_at"),
    )

    def __repr__(self):
        return (
            f"<SyncHistory({self.owner}/{self.repo}, status={self.status}, "
            f"type={self.sync_type}, synced={self.issues_synced})>"
        )
