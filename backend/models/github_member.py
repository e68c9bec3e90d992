"""GitHub organization member model (the "users" collection)."""
from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from models.github_mirror import MirroredRecordMixin


class GitHubMember(MirroredRecordMixin, Base):
    """A member of a mirrored organization, with full profile when available."""

    __tablename__ = "github_members"
    __table_args__ = (
        Index("uq_gh_members_user_org_login", "user_id", "org_login", "login", unique=True),
    )

    NATURAL_KEY = ("user_id", "org_login", "login")
    DOCUMENT_FIELDS = {"org_login": "orgLogin"}

    org_login: Mapped[str] = mapped_column(String(255), nullable=False)
    login: Mapped[str] = mapped_column(String(255), nullable=False)
