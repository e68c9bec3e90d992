"""GitHub Commit model - commits on mirrored repositories."""
from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from models.github_mirror import MirroredRecordMixin


class GitHubCommit(MirroredRecordMixin, Base):
    """A commit on a mirrored repository."""

    __tablename__ = "github_commits"
    __table_args__ = (
        Index("idx_gh_commits_repo", "user_id", "repo_name"),
        Index("uq_gh_commits_user_repo_sha", "user_id", "repo_name", "sha", unique=True),
    )

    NATURAL_KEY = ("user_id", "repo_name", "sha")
    DOCUMENT_FIELDS = {"org_login": "orgLogin", "repo_name": "repoName"}

    org_login: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sha: Mapped[str] = mapped_column(String(40), nullable=False)
