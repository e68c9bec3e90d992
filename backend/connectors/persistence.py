"""
Persistence layer for mirrored GitHub records.

The sync pipeline hands batches of :class:`connectors.models.MirrorRecord`
to :class:`RecordStore`, which upserts them into the table for their kind
with ``INSERT ... ON CONFLICT (natural key) DO UPDATE``. Upsert is the only
write path, so re-running a sync converges on the same rows.

A batch that fails as a whole is retried one row at a time inside
savepoints: a single bad row costs that row, not the batch.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Optional, Sequence

from sqlalchemy import Float, Text, asc, cast, delete, desc, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from connectors.models import EntityKind, MirrorRecord
from models.database import get_session

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

# Keeps each multi-row INSERT well under asyncpg's bind parameter limit
UPSERT_CHUNK_SIZE: int = 500

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION: str = "23505"

FILTER_TYPES: tuple[str, ...] = (
    "contains", "equals", "startsWith", "endsWith", "greaterThan", "lessThan",
)


@dataclass
class UpsertResult:
    """Outcome of one upsert call."""

    written: int = 0
    conflicts: int = 0  # duplicates within the batch plus unique violations on retry
    failed: int = 0

    def __add__(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(
            written=self.written + other.written,
            conflicts=self.conflicts + other.conflicts,
            failed=self.failed + other.failed,
        )

    def to_dict(self) -> dict[str, int]:
        return {"written": self.written, "conflicts": self.conflicts, "failed": self.failed}


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    True when the database rejected a row for a duplicate key.

    asyncpg errors carry ``sqlstate``; SQLAlchemy's asyncpg adapter and
    psycopg2 expose the same code as ``pgcode``. NOT NULL, foreign key and
    check violations are IntegrityErrors too, but are not duplicates.
    """
    for candidate in (exc.orig, getattr(exc.orig, "__cause__", None)):
        code = getattr(candidate, "pgcode", None) or getattr(candidate, "sqlstate", None)
        if code:
            return code == UNIQUE_VIOLATION
    return False


# ---------------------------------------------------------------------------
# Statement builders
# ---------------------------------------------------------------------------

def dedupe_records(records: Sequence[MirrorRecord]) -> tuple[list[MirrorRecord], int]:
    """
    Collapse records sharing a natural key; the last one wins.

    Postgres rejects an ON CONFLICT DO UPDATE that touches the same row
    twice in one statement. Returns the unique records in first-seen order
    plus the number dropped.
    """
    by_key: dict[tuple[Any, ...], MirrorRecord] = {}
    for record in records:
        by_key[record.natural_key()] = record
    return list(by_key.values()), len(records) - len(by_key)


def build_upsert_statement(
    kind: EntityKind,
    rows: Sequence[dict[str, Any]],
    synced_at: datetime,
):
    """INSERT ... ON CONFLICT (natural key) DO UPDATE for ``rows`` of ``kind``."""
    model = kind.model
    conflict_keys: list[str] = list(model.NATURAL_KEY)

    values: list[dict[str, Any]] = [
        {
            **row,
            "id": uuid.uuid4(),
            "synced_at": synced_at,
            "created_at": synced_at,
            "updated_at": synced_at,
        }
        for row in rows
    ]
    stmt = pg_insert(model.__table__).values(values)

    update_cols: dict[str, Any] = {
        col: getattr(stmt.excluded, col)
        for col in rows[0]
        if col not in conflict_keys
    }
    update_cols["synced_at"] = stmt.excluded.synced_at
    update_cols["updated_at"] = stmt.excluded.updated_at

    return stmt.on_conflict_do_update(index_elements=conflict_keys, set_=update_cols)


# ---------------------------------------------------------------------------
# Query helpers (collection browser)
# ---------------------------------------------------------------------------

def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _document_columns(kind: EntityKind) -> dict[str, Any]:
    """Document-level keys that live in real columns rather than the payload."""
    model = kind.model
    columns: dict[str, Any] = {
        "userId": model.user_id,
        "syncedAt": model.synced_at,
        "createdAt": model.created_at,
        "updatedAt": model.updated_at,
    }
    for column, key in model.DOCUMENT_FIELDS.items():
        columns[key] = getattr(model, column)
    return columns


def field_expression(kind: EntityKind, field: str, as_text: bool = True) -> ColumnElement[Any]:
    """Resolve a dotted document path (``user.login``) to a SQL expression."""
    columns = _document_columns(kind)
    if field in columns:
        column = columns[field]
        return cast(column, Text) if as_text else column
    path = tuple(segment for segment in field.split(".") if segment)
    if not path:
        raise ValueError("Empty field path")
    node = kind.model.payload[path]
    return node.astext if as_text else node


def build_filter_condition(kind: EntityKind, field: str, criterion: Any) -> Optional[ColumnElement[bool]]:
    """
    One filter clause. ``criterion`` is either a plain value (case-insensitive
    contains) or ``{"type": ..., "value": ...}``. Empty values are ignored.
    """
    if isinstance(criterion, dict) and criterion.get("type"):
        filter_type: str = criterion["type"]
        value: Any = criterion.get("value")
    else:
        filter_type, value = "contains", criterion
    if value is None or value == "":
        return None

    if filter_type in ("greaterThan", "lessThan"):
        is_number: bool = isinstance(value, (int, float)) and not isinstance(value, bool)
        if field in _document_columns(kind):
            target = field_expression(kind, field, as_text=not is_number)
            operand: Any = value if is_number else str(value)
        elif is_number:
            target = cast(field_expression(kind, field), Float)
            operand = value
        else:
            # jsonb ordering: strings compare lexically (ISO dates sort correctly)
            target = field_expression(kind, field, as_text=False)
            operand = cast(json.dumps(value), JSONB)
        return target > operand if filter_type == "greaterThan" else target < operand

    text_expr = field_expression(kind, field)
    text_value: str = str(value).lower() if isinstance(value, bool) else str(value)
    if filter_type == "equals":
        return text_expr == text_value
    escaped: str = _like_escape(text_value)
    if filter_type == "startsWith":
        return text_expr.ilike(f"{escaped}%", escape="\\")
    if filter_type == "endsWith":
        return text_expr.ilike(f"%{escaped}", escape="\\")
    # contains, and any unknown type
    return text_expr.ilike(f"%{escaped}%", escape="\\")


def build_search_condition(kind: EntityKind, search_term: str) -> ColumnElement[bool]:
    """Case-insensitive match of ``search_term`` anywhere in the raw payload."""
    pattern: str = f"%{_like_escape(search_term)}%"
    return cast(kind.model.payload, Text).ilike(pattern, escape="\\")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class RecordStore:
    """Upserts, deletes, counts and queries mirrored records."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    # ── writes ─────────────────────────────────────────────────────────

    async def upsert_one(self, record: MirrorRecord) -> UpsertResult:
        return await self.upsert_many([record])

    async def upsert_many(self, records: Sequence[MirrorRecord]) -> UpsertResult:
        """Upsert a batch of records of one kind. Never raises for row-level failures."""
        if not records:
            return UpsertResult()

        kind: EntityKind = records[0].kind
        if any(record.kind is not kind for record in records):
            raise ValueError("upsert_many expects records of a single kind")

        unique, duplicates = dedupe_records(records)
        result = UpsertResult(conflicts=duplicates)
        now: datetime = datetime.utcnow()

        async with self._session_factory() as session:
            for start in range(0, len(unique), UPSERT_CHUNK_SIZE):
                chunk = unique[start:start + UPSERT_CHUNK_SIZE]
                result = result + await self._upsert_chunk(session, kind, chunk, now)

        logger.info(
            "Persisted %d %s records for user %s",
            result.written,
            kind.value,
            records[0].user_id,
            extra={"kind": kind.value, **result.to_dict()},
        )
        return result

    async def _upsert_chunk(
        self,
        session: AsyncSession,
        kind: EntityKind,
        chunk: Sequence[MirrorRecord],
        now: datetime,
    ) -> UpsertResult:
        try:
            await session.execute(build_upsert_statement(kind, [r.to_row() for r in chunk], now))
            await session.commit()
            return UpsertResult(written=len(chunk))
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning(
                "Bulk upsert of %d %s records failed, retrying row by row: %s",
                len(chunk),
                kind.value,
                exc,
            )

        result = UpsertResult()
        for record in chunk:
            try:
                async with session.begin_nested():
                    await session.execute(build_upsert_statement(kind, [record.to_row()], now))
                result.written += 1
            except SQLAlchemyError as exc:
                if isinstance(exc, IntegrityError) and is_unique_violation(exc):
                    result.conflicts += 1
                    continue
                result.failed += 1
                logger.error(
                    "Failed to upsert %s record %s: %s",
                    kind.value,
                    record.natural_key(),
                    exc,
                )
        await session.commit()
        return result

    async def delete_all_for_user(self, user_id: str) -> dict[str, int]:
        """Delete every mirrored record owned by ``user_id`` in one transaction."""
        deleted: dict[str, int] = {}
        async with self._session_factory() as session:
            for kind in EntityKind:
                model = kind.model
                result = await session.execute(delete(model).where(model.user_id == user_id))
                deleted[kind.value] = result.rowcount or 0
            await session.commit()

        logger.info("Deleted mirrored data for user %s", user_id, extra={"deleted": deleted})
        return deleted

    # ── reads ──────────────────────────────────────────────────────────

    async def count_for_user(self, kind: EntityKind, user_id: str) -> int:
        model = kind.model
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(model).where(model.user_id == user_id)
            )
            return int(result.scalar_one())

    async def counts_for_user(self, user_id: str) -> dict[str, int]:
        """Counts per kind keyed by ``EntityKind.stats_key``."""
        counts: dict[str, int] = {}
        async with self._session_factory() as session:
            for kind in EntityKind:
                model = kind.model
                result = await session.execute(
                    select(func.count()).select_from(model).where(model.user_id == user_id)
                )
                counts[kind.stats_key] = int(result.scalar_one())
        return counts

    async def query(
        self,
        kind: EntityKind,
        *,
        user_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 100,
        sort_field: Optional[str] = None,
        sort_order: str = "asc",
        filters: Optional[dict[str, Any]] = None,
        search_term: str = "",
    ) -> tuple[list[dict[str, Any]], int]:
        """One page of documents plus the total match count."""
        model = kind.model
        conditions: list[ColumnElement[bool]] = []
        if user_id:
            conditions.append(model.user_id == user_id)
        for field, criterion in (filters or {}).items():
            condition = build_filter_condition(kind, field, criterion)
            if condition is not None:
                conditions.append(condition)
        if search_term:
            conditions.append(build_search_condition(kind, search_term))

        if sort_field:
            sort_expr = field_expression(kind, sort_field, as_text=False)
            order_by = desc(sort_expr) if sort_order == "desc" else asc(sort_expr)
        else:
            order_by = desc(model.created_at)

        async with self._session_factory() as session:
            total = await session.execute(
                select(func.count()).select_from(model).where(*conditions)
            )
            rows = await session.execute(
                select(model)
                .where(*conditions)
                .order_by(order_by)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            documents = [row.to_dict() for row in rows.scalars().all()]
            return documents, int(total.scalar_one())

    async def search(
        self,
        kind: EntityKind,
        search_term: str,
        *,
        user_id: Optional[str] = None,
        sample_size: int = 5,
    ) -> tuple[int, list[dict[str, Any]]]:
        """Match count and a few sample documents for ``search_term``."""
        model = kind.model
        conditions: list[ColumnElement[bool]] = [build_search_condition(kind, search_term)]
        if user_id:
            conditions.append(model.user_id == user_id)

        async with self._session_factory() as session:
            total = await session.execute(
                select(func.count()).select_from(model).where(*conditions)
            )
            rows = await session.execute(select(model).where(*conditions).limit(sample_size))
            return int(total.scalar_one()), [row.to_dict() for row in rows.scalars().all()]
