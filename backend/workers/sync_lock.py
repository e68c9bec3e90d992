"""
Redis-backed per-integration lock shared by the API and Celery workers.

Keeps two processes from syncing the same integration at once. The lock is
a plain ``SET key token NX EX ttl``; release only deletes the key
if it still holds our token, so a run that outlived its TTL can't release a
lock some later run now owns.

Usage:
    lock = RedisSyncLock(redis_url)
    async with lock.hold(user_id) as acquired:
        if acquired:
            ...  # run the sync
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis

from config import settings

logger = logging.getLogger(__name__)


class RedisSyncLock:
    """Distributed single-flight lock keyed by integration ``user_id``."""

    # Lua script: delete the key only if it still holds the caller's token.
    _RELEASE_SCRIPT: str = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        ttl_s: Optional[int] = None,
        client: Optional[Any] = None,
    ) -> None:
        """
        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL).
            ttl_s: Lock expiry in seconds, so a crashed worker can't hold it forever.
            client: Pre-built redis client (tests pass a fake).
        """
        self._redis: Any = client or aioredis.from_url(
            redis_url or settings.REDIS_URL, decode_responses=True
        )
        self._ttl_s: int = ttl_s or settings.SYNC_LOCK_TTL_S

    @staticmethod
    def _key(user_id: str) -> str:
        return f"github_sync_lock:{user_id}"

    async def acquire(self, user_id: str) -> Optional[str]:
        """Try to take the lock. Returns the owner token, or None if it is held."""
        token: str = uuid.uuid4().hex
        acquired = await self._redis.set(self._key(user_id), token, nx=True, ex=self._ttl_s)
        if not acquired:
            logger.info("[SyncLock] Sync already running elsewhere for user %s", user_id)
            return None
        return token

    async def release(self, user_id: str, token: str) -> bool:
        released = await self._redis.eval(self._RELEASE_SCRIPT, 1, self._key(user_id), token)
        if not released:
            logger.warning("[SyncLock] Lock for user %s expired before release", user_id)
        return bool(released)

    async def is_held(self, user_id: str) -> bool:
        """True while any process holds the lock for ``user_id``."""
        return bool(await self._redis.exists(self._key(user_id)))

    async def wait_until_released(
        self,
        user_id: str,
        timeout_s: float,
        poll_interval_s: float = 0.5,
    ) -> bool:
        """
        Poll until nobody holds the lock for ``user_id``.

        Returns:
            True once the lock is free, False if it was still held after ``timeout_s``
        """
        loop = asyncio.get_running_loop()
        deadline: float = loop.time() + timeout_s
        while await self.is_held(user_id):
            if loop.time() >= deadline:
                logger.warning(
                    "[SyncLock] Lock for user %s still held after %.1fs", user_id, timeout_s
                )
                return False
            await asyncio.sleep(poll_interval_s)
        return True

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[bool]:
        token: Optional[str] = await self.acquire(user_id)
        try:
            yield token is not None
        finally:
            if token is not None:
                await self.release(user_id, token)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self._redis.aclose()
