"""
Shared columns for mirrored GitHub records.

Every mirrored entity keeps the raw API object in ``payload`` (JSONB) next to
the handful of columns that make up its natural key and parent scope. Writes
go through ``INSERT ... ON CONFLICT (natural key) DO UPDATE`` only, so each
table carries a unique index over ``NATURAL_KEY``.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, ClassVar, Optional

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601


class MirroredRecordMixin:
    """Columns and document rendering common to every mirrored kind."""

    # Columns (in order) forming the upsert conflict target
    NATURAL_KEY: ClassVar[tuple[str, ...]] = ()
    # Scope column -> key used when rendering the record as a document
    DOCUMENT_FIELDS: ClassVar[dict[str, str]] = {}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # GitHub account id of the owning integration
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Render as the raw API object plus owner and scope fields."""
        doc: dict[str, Any] = dict(self.payload or {})
        doc["_id"] = str(self.id)
        doc["userId"] = self.user_id
        for column, key in self.DOCUMENT_FIELDS.items():
            doc[key] = getattr(self, column)
        doc["syncedAt"] = to_iso8601(self.synced_at)
        return doc
