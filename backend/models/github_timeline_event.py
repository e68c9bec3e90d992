"""
GitHub issue timeline event model (the "issue-changelogs" collection).

Some timeline event types (committed, cross-referenced) carry no numeric
``id``; ``event_id`` is then derived from ``node_id``, the commit sha, or a
hash of the event body. See ``connectors.models.timeline_event_id``.
"""
from __future__ import annotations

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from models.github_mirror import MirroredRecordMixin


class GitHubIssueTimelineEvent(MirroredRecordMixin, Base):
    """One event from an issue's timeline."""

    __tablename__ = "github_issue_timeline_events"
    __table_args__ = (
        Index("idx_gh_timeline_issue", "user_id", "repo_name", "issue_number"),
        Index(
            "uq_gh_timeline_user_issue_event",
            "user_id",
            "issue_number",
            "event_id",
            unique=True,
        ),
    )

    NATURAL_KEY = ("user_id", "issue_number", "event_id")
    DOCUMENT_FIELDS = {
        "org_login": "orgLogin",
        "repo_name": "repoName",
        "issue_number": "issueNumber",
    }

    org_login: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    issue_number: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
