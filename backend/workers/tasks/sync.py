"""
Sync tasks for Celery workers.

These tasks run the GitHub mirror pipeline on a schedule (beat) or on
demand. The Redis sync lock taken by ``run_integration_sync`` keeps a worker
off an integration the API or another worker is already syncing.
"""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure backend directory is in Python path for Celery forked workers
_backend_dir = Path(__file__).resolve().parent.parent.parent
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

import asyncio
import logging
from datetime import datetime
from typing import Any

from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro: Any) -> Any:
    """Run an async function in a sync context (for Celery tasks).

    Creates a fresh event loop and disposes the database engine on that same
    loop afterwards; asyncpg connections can't be reused across loops.
    """
    from models.database import dispose_engine

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.run_until_complete(dispose_engine())
        loop.close()


async def _sync_integration(user_id: str) -> dict[str, Any]:
    """
    Internal async function to sync a single integration.

    Returns sync results including counts and any errors.
    """
    from connectors.errors import IdentityError
    from connectors.github_sync import SyncStatus
    from services.sync_runner import run_integration_sync

    logger.info(f"Starting GitHub sync for user {user_id}")
    try:
        report = await run_integration_sync(user_id)
    except IdentityError as e:
        logger.error(f"GitHub sync failed for user {user_id}: {e}")
        return {"status": "failed", "user_id": user_id, "error": str(e)}

    if report is None:
        return {"status": "skipped", "user_id": user_id, "error": "No active integration"}
    if report.status is SyncStatus.ALREADY_RUNNING:
        return {"status": "already_running", "user_id": user_id}

    logger.info(f"Completed GitHub sync for user {user_id}: {report.counts}")
    return {
        "status": report.status.value,
        "user_id": user_id,
        "counts": report.counts,
        "degraded_units": len(report.degraded_units),
        "error": report.error,
    }


async def _get_active_user_ids() -> list[str]:
    """User ids of every active integration, least recently synced first."""
    from services.integration_store import IntegrationStore

    integrations = await IntegrationStore().list_active()
    return [integration.user_id for integration in integrations]


@celery_app.task(bind=True, name="workers.tasks.sync.sync_integration")
def sync_integration(self: Any, user_id: str) -> dict[str, Any]:
    """
    Celery task to sync a single GitHub integration.

    Args:
        user_id: GitHub account id of the integration

    Returns:
        Dict with sync status, counts, and any errors
    """
    logger.info(f"Task {self.request.id}: Syncing GitHub integration for user {user_id}")
    return run_async(_sync_integration(user_id))


@celery_app.task(bind=True, name="workers.tasks.sync.sync_all_integrations")
def sync_all_integrations(self: Any) -> dict[str, Any]:
    """
    Celery task that fans out one ``sync_integration`` per active integration.

    This is the periodic task that runs via Beat schedule.
    """
    logger.info(f"Task {self.request.id}: Starting periodic GitHub sync")

    user_ids: list[str] = run_async(_get_active_user_ids())
    for user_id in user_ids:
        sync_integration.delay(user_id)

    logger.info(f"Dispatched {len(user_ids)} GitHub sync tasks")
    return {
        "status": "dispatched",
        "total_integrations": len(user_ids),
        "dispatched_at": datetime.utcnow().isoformat(),
    }
