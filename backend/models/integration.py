"""
GitHub integration model.

One row per linked GitHub account. Holds the OAuth credential plus the
bookkeeping the sync pipeline reads and writes (last sync time, last error,
stats from the most recent run).
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base


class GitHubIntegration(Base):
    """
    Stored credential and sync state for one GitHub account.

    ``user_id`` is the GitHub account id (as a string) and is the key every
    mirrored record is scoped by.
    """

    __tablename__ = "github_integrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    # Account identity (from GET /user at authorization time)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # OAuth credential
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Status
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    connected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Summary of the most recent run (counts per kind, degraded units, status)
    sync_stats: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    # Timestamps
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses. Never includes the token."""
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "username": self.username,
            "avatar_url": self.avatar_url,
            "email": self.email,
            "name": self.name,
            "is_active": self.is_active,
            "connected_at": to_iso8601(self.connected_at),
            "last_synced_at": to_iso8601(self.last_synced_at),
            "last_error": self.last_error,
            "sync_stats": self.sync_stats,
        }
