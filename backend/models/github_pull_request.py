"""GitHub Pull Request model - PRs on mirrored repositories, all states."""
from __future__ import annotations

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from models.github_mirror import MirroredRecordMixin


class GitHubPullRequest(MirroredRecordMixin, Base):
    """A pull request on a mirrored repository."""

    __tablename__ = "github_pull_requests"
    __table_args__ = (
        Index("idx_gh_prs_repo", "user_id", "repo_name"),
        Index("uq_gh_prs_user_repo_number", "user_id", "repo_name", "number", unique=True),
    )

    NATURAL_KEY = ("user_id", "repo_name", "number")
    DOCUMENT_FIELDS = {"org_login": "orgLogin", "repo_name": "repoName"}

    org_login: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
