"""GitHub organization model - one row per org visible to an integration."""
from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from models.github_mirror import MirroredRecordMixin


class GitHubOrganization(MirroredRecordMixin, Base):
    """An organization the linked account belongs to."""

    __tablename__ = "github_organizations"
    __table_args__ = (
        Index("uq_gh_orgs_user_login", "user_id", "login", unique=True),
    )

    NATURAL_KEY = ("user_id", "login")
    DOCUMENT_FIELDS = {}

    login: Mapped[str] = mapped_column(String(255), nullable=False)
