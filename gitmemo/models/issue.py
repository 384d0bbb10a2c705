"""
Issue model - the mirrored copy of an upstream GitHub issue.

The natural key is (owner, repo, issue_number). Label names are kept as an
ordered JSON array and joined against the labels table on read.

Timestamps:
- github_created_at: authoritative creation time reported by GitHub
- created_at: when this mirror first stored the issue (never overwritten)
- updated_at: last time this mirror wrote the row
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, JSON, Index, UniqueConstraint
)

from gitmemo.database import Base


class IssueState(str, enum.Enum):
    """State of an upstream issue."""
    OPEN = "open"
    CLOSED = "closed"


class Issue(Base):
    """A mirrored issue, rendered as one memo card."""
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True)

    # ============ NATURAL KEY ============
    owner = Column(String(255), nullable=False)
    repo = Column(String(255), nullable=False)
    issue_number = Column(Integer, nullable=False)

    # ============ CONTENT ============
    title = Column(String(1024), nullable=False)
    body = Column(Text)
    state = Column(String(10), nullable=False, default=IssueState.OPEN.value)
    labels = Column(JSON, nullable=False, default=list)  # ordered label names

    # ============ TIMESTAMPS ============
    github_created_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("owner", "repo", "issue_number", name="uq_issues_owner_repo_number"),
        Index("ix_issues_repo_github_created", "owner", "repo", "github_created_at"),
    )

    def __repr__(self):
        return f"<Issue({self.owner}/{self.repo}#{self.issue_number}, title={self.title[:30] if self.title else ''})>"
