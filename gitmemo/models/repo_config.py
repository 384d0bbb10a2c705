"""
RepoConfig model - repository settings saved from the config dialog.

The token column holds ciphertext. The newest row is the active
configuration; environment variables take precedence over it.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func

from gitmemo.database import Base


class RepoConfig(Base):
    __tablename__ = "configs"

    id = Column(Integer, primary_key=True)
    owner = Column(String(255), nullable=False)
    repo = Column(String(255), nullable=False)
    token = Column(Text)  # encrypted
    issues_per_page = Column(Integer, nullable=False, default=10)
    password = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<RepoConfig(owner={self.owner}, repo={self.repo}, has_token={bool(self.token)})>"
