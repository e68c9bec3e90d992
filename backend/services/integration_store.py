"""
Storage for GitHub integrations (credential + sync bookkeeping).

All lookups are keyed by ``user_id``, the GitHub account id as a string.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from models.database import get_session
from models.integration import GitHubIntegration

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

MAX_ERROR_LENGTH: int = 500


class IntegrationStore:
    """CRUD over :class:`GitHubIntegration` rows."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Optional[GitHubIntegration]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GitHubIntegration).where(GitHubIntegration.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def get_active(self, user_id: str) -> Optional[GitHubIntegration]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GitHubIntegration).where(
                    GitHubIntegration.user_id == user_id,
                    GitHubIntegration.is_active == True,  # noqa: E712
                )
            )
            return result.scalar_one_or_none()

    async def is_active(self, user_id: str) -> bool:
        return await self.get_active(user_id) is not None

    async def list_active(self) -> list[GitHubIntegration]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GitHubIntegration)
                .where(GitHubIntegration.is_active == True)  # noqa: E712
                .order_by(GitHubIntegration.last_synced_at.asc().nulls_first())
            )
            return list(result.scalars().all())

    async def upsert_from_authorization(
        self,
        user_info: dict[str, Any],
        token: dict[str, Any],
    ) -> GitHubIntegration:
        """
        Create or refresh the integration after a successful OAuth exchange.

        Resets ``last_synced_at`` so the follow-up sync is treated as the first.
        """
        user_id: str = str(user_info["id"])
        now: datetime = datetime.utcnow()
        values: dict[str, Any] = {
            "user_id": user_id,
            "username": user_info.get("login"),
            "avatar_url": user_info.get("avatar_url"),
            "profile_url": user_info.get("html_url"),
            "email": user_info.get("email"),
            "name": user_info.get("name"),
            "access_token": token["access_token"],
            "refresh_token": token.get("refresh_token"),
            "token_type": token.get("token_type"),
            "scope": token.get("scope"),
            "connected_at": now,
            "last_synced_at": None,
            "last_error": None,
            "is_active": True,
            "updated_at": now,
        }

        stmt = pg_insert(GitHubIntegration).values(id=uuid.uuid4(), created_at=now, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={key: getattr(stmt.excluded, key) for key in values if key != "user_id"},
        ).returning(GitHubIntegration)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            integration: GitHubIntegration = result.scalar_one()
            await session.commit()

        logger.info(
            "Stored GitHub integration for %s",
            values["username"],
            extra={"user_id": user_id},
        )
        return integration

    async def mark_synced(self, user_id: str, stats: Optional[dict[str, Any]] = None) -> None:
        """Stamp ``last_synced_at`` and clear ``last_error`` after a run."""
        async with self._session_factory() as session:
            integration = await self._load(session, user_id)
            if integration is None:
                logger.warning("No GitHub integration found for user %s", user_id)
                return
            integration.last_synced_at = datetime.utcnow()
            integration.last_error = None
            if stats is not None:
                integration.sync_stats = stats
                # JSONB columns need explicit flag for SQLAlchemy to detect changes
                flag_modified(integration, "sync_stats")
            await session.commit()

    async def record_error(self, user_id: str, error: str) -> None:
        async with self._session_factory() as session:
            integration = await self._load(session, user_id)
            if integration is None:
                return
            integration.last_error = error[:MAX_ERROR_LENGTH]  # Truncate long errors
            await session.commit()

    async def deactivate(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            integration = await self._load(session, user_id)
            if integration is None:
                return False
            integration.is_active = False
            await session.commit()
        return True

    async def delete(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(GitHubIntegration).where(GitHubIntegration.user_id == user_id)
            )
            await session.commit()
            return bool(result.rowcount)

    @staticmethod
    async def _load(session: AsyncSession, user_id: str) -> Optional[GitHubIntegration]:
        result = await session.execute(
            select(GitHubIntegration).where(GitHubIntegration.user_id == user_id)
        )
        return result.scalar_one_or_none()
