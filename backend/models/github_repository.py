"""
GitHub Repository model - repositories owned by a mirrored organization.

Keyed by name within the owning org, not by GitHub's numeric id, so a
re-created repository with the same name replaces the old row.
"""
from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from models.github_mirror import MirroredRecordMixin


class GitHubRepository(MirroredRecordMixin, Base):
    """A repository under a mirrored organization."""

    __tablename__ = "github_repositories"
    __table_args__ = (
        Index("idx_gh_repos_org", "user_id", "org_login"),
        Index("uq_gh_repos_user_org_name", "user_id", "org_login", "name", unique=True),
    )

    NATURAL_KEY = ("user_id", "org_login", "name")
    DOCUMENT_FIELDS = {"org_login": "orgLogin"}

    org_login: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # e.g. "hello-world"
