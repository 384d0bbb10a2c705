"""
SQLAlchemy models for the issue mirror.

This package contains:
- Issue: Mirrored GitHub issues (memos)
- Label: Mirrored GitHub labels
- SyncHistory: Append-only sync log, pruned per repository
- RepoConfig: Saved repository configuration with encrypted token
"""

from gitmemo.models.issue import Issue, IssueState
from gitmemo.models.label import Label
from gitmemo.models.repo_config import RepoConfig
from gitmemo.models.sync_history import (
    SYNC_HISTORY_LIMIT,
    SyncHistory,
    SyncOutcome,
    SyncType,
)

__all__ = [
    "Issue",
    "IssueState",
    "Label",
    "RepoConfig",
    "SYNC_HISTORY_LIMIT",
    "SyncHistory",
    "SyncOutcome",
    "SyncType",
]
