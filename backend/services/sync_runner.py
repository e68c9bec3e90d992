"""
Background runner for GitHub syncs triggered from the API.

Runs are detached asyncio tasks, keyed by integration ``user_id``. At most
one run per integration is in flight inside this process: a second trigger
while one is running joins the existing task instead of starting another.

Across processes every run, API or Celery, goes through
:func:`run_integration_sync`, which holds the Redis sync lock for the
duration of the pipeline.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import settings
from connectors.errors import IdentityError
from connectors.github_sync import SyncReport, SyncStatus, sync_integration
from services.integration_store import IntegrationStore
from workers.sync_lock import RedisSyncLock

logger = logging.getLogger(__name__)

SyncCallable = Callable[[str], Awaitable[Optional[SyncReport]]]


async def run_integration_sync(user_id: str) -> Optional[SyncReport]:
    """
    Load the active integration for ``user_id`` and run the pipeline once.

    Returns None when there is no active integration to sync, and an
    ``ALREADY_RUNNING`` report when another process holds the sync lock.
    """
    lock = RedisSyncLock()
    try:
        async with lock.hold(user_id) as acquired:
            if not acquired:
                logger.info("GitHub sync for user %s is running in another process", user_id)
                return SyncReport(user_id=user_id).finish(SyncStatus.ALREADY_RUNNING)

            integration = await IntegrationStore().get_active(user_id)
            if integration is None:
                logger.info("No active GitHub integration for user %s; skipping sync", user_id)
                return None
            return await sync_integration(integration)
    finally:
        await lock.close()


async def is_sync_locked(user_id: str) -> bool:
    """True while any process holds the sync lock for ``user_id``."""
    lock = RedisSyncLock()
    try:
        return await lock.is_held(user_id)
    finally:
        await lock.close()


async def wait_for_sync_release(user_id: str, timeout_s: Optional[float] = None) -> bool:
    """Wait for a run in another process to let go of ``user_id``'s sync lock."""
    lock = RedisSyncLock()
    try:
        return await lock.wait_until_released(
            user_id, timeout_s if timeout_s is not None else settings.SYNC_DISCONNECT_WAIT_S
        )
    finally:
        await lock.close()


class SyncTaskManager:
    """
    Registry of in-flight sync tasks.

    Singleton pattern - one instance manages all sync tasks in the process.
    """

    _instance: "SyncTaskManager | None" = None

    def __new__(cls, *args: object, **kwargs: object) -> "SyncTaskManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, sync: SyncCallable = run_integration_sync) -> None:
        if self._initialized:
            return

        self._sync: SyncCallable = sync

        # Active asyncio tasks by integration user_id
        self._running_tasks: dict[str, asyncio.Task[Optional[SyncReport]]] = {}

        # Guards check-then-start so two triggers can't both start a run
        self._lock = asyncio.Lock()

        self._initialized = True
        logger.info("SyncTaskManager initialized")

    async def start(self, user_id: str) -> tuple[asyncio.Task[Optional[SyncReport]], bool]:
        """
        Start a sync for ``user_id`` unless one is already running.

        Returns:
            (task, started) - ``started`` is False when an existing run was joined.
        """
        async with self._lock:
            existing = self._running_tasks.get(user_id)
            if existing is not None and not existing.done():
                logger.info("GitHub sync already running for user %s; joining", user_id)
                return existing, False

            task: asyncio.Task[Optional[SyncReport]] = asyncio.create_task(self._run(user_id))
            self._running_tasks[user_id] = task
            logger.info("Started GitHub sync task for user %s", user_id)
            return task, True

    async def _run(self, user_id: str) -> Optional[SyncReport]:
        try:
            report: Optional[SyncReport] = await self._sync(user_id)
            if report is not None and report.status is SyncStatus.COMPLETED:
                logger.info(
                    "Background GitHub sync finished for user %s",
                    user_id,
                    extra={"counts": report.counts},
                )
            return report
        except asyncio.CancelledError:
            logger.info("GitHub sync task for user %s was cancelled", user_id)
            raise
        except IdentityError as e:
            logger.error("GitHub sync for user %s aborted: %s", user_id, e)
            return None
        except Exception as e:
            logger.exception("GitHub sync task for user %s failed with error: %s", user_id, e)
            return None
        finally:
            # Only drop our own entry; a newer run may have replaced it
            if self._running_tasks.get(user_id) is asyncio.current_task():
                self._running_tasks.pop(user_id, None)

    def is_running(self, user_id: str) -> bool:
        task = self._running_tasks.get(user_id)
        return task is not None and not task.done()

    async def cancel(self, user_id: str) -> bool:
        """
        Cancel the in-flight run for ``user_id`` and wait for it to unwind.

        Returns:
            True if a running task was cancelled, False if none was running
        """
        async with self._lock:
            task = self._running_tasks.pop(user_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cancelled GitHub sync for user %s", user_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every in-flight run. Call on application shutdown."""
        for user_id in list(self._running_tasks):
            await self.cancel(user_id)


sync_task_manager = SyncTaskManager()
