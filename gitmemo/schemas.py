"""
Pydantic models exchanged between the orchestrator, the store and the API.

These are the mirror's view of GitHub data, independent of the ORM rows and of
the upstream wire format.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from gitmemo.models import IssueState


class LabelData(BaseModel):
    """A label as shown on a memo."""
    id: Optional[int] = None
    name: str
    color: str = Field(description="Six hex digits, no leading '#'")
    description: Optional[str] = None

    class Config:
        from_attributes = True

    @field_validator("color")
    @classmethod
    def strip_hash(cls, value: str) -> str:
        return value.lstrip("#")


class IssueData(BaseModel):
    """An issue as shown on a memo card."""
    number: int
    title: str
    body: Optional[str] = None
    state: IssueState = IssueState.OPEN
    labels: list[LabelData] = Field(default_factory=list)
    github_created_at: Optional[datetime] = None
    created_at: Optional[datetime] = None  # mirror-local, set on first insert
    updated_at: Optional[datetime] = None

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


class IssuePage(BaseModel):
    """One page of issues from the store plus the unpaginated total."""
    issues: list[IssueData]
    total: int


class SyncStatusInfo(BaseModel):
    """Latest sync record for a repository, as used to pick the sync mode."""
    needs_sync: bool
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    status: Optional[str] = None
    issues_synced: Optional[int] = None


class SyncSummary(BaseModel):
    """What a caller learns about the sync performed for its request."""
    success: bool
    total_synced: int
    last_sync_at: Optional[datetime] = None


class IssuesResult(BaseModel):
    issues: list[IssueData]
    sync_status: Optional[SyncSummary] = None


class PublicConfig(BaseModel):
    """Repository config safe to hand to browsers."""
    owner: str
    repo: str
    issues_per_page: int = 10


class ServerConfig(PublicConfig):
    """Repository config for server-side use; the token is always ciphertext."""
    token: Optional[str] = None
