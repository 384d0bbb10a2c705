"""
Label model - mirrored GitHub labels, unique per (owner, repo, name).

Colors are stored as GitHub returns them: six hex digits without a leading '#'.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint

from gitmemo.database import Base


class Label(Base):
    __tablename__ = "labels"

    id = Column(Integer, primary_key=True)
    owner = Column(String(255), nullable=False)
    repo = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    color = Column(String(16), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("owner", "repo", "name", name="uq_labels_owner_repo_name"),
    )

    def __repr__(self):
        return f"<Label({self.owner}/{self.repo}:{self.name}, color={self.color})>"
