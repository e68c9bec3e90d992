"""
GitHub integration endpoints.

Endpoints:
- GET /api/github/auth-url - OAuth authorize URL
- GET /api/github/callback - OAuth redirect target; stores the integration and starts a sync
- GET /api/github/status/{user_id} - Connection status
- GET /api/github/sync-status/{user_id} - Mirrored record counts per collection
- GET /api/github/rate-limit/{user_id} - Current GitHub API quota for the integration's token
- POST /api/github/resync/{user_id} - Start a background sync
- DELETE /api/github/integration/{user_id} - Disconnect and delete mirrored data
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config import settings, to_iso8601
from connectors.errors import IdentityError
from connectors.github import GitHubClient
from connectors.persistence import RecordStore
from services.github_oauth import OAuthExchangeError, build_authorize_url, exchange_code
from services.integration_store import IntegrationStore
from services.sync_runner import is_sync_locked, sync_task_manager, wait_for_sync_release

router = APIRouter()
logger = logging.getLogger(__name__)

integration_store = IntegrationStore()
record_store = RecordStore()


class CamelModel(BaseModel):
    """Response models serialize with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthUrlResponse(CamelModel):
    auth_url: str


class IntegrationStatusResponse(CamelModel):
    connected: bool
    connected_at: Optional[str] = None
    last_synced_at: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    sync_in_progress: bool = False
    last_error: Optional[str] = None


class SyncCountsResponse(CamelModel):
    organizations: int
    repositories: int
    commits: int
    pull_requests: int
    issues: int
    issue_changelogs: int
    users: int


class ResyncResponse(CamelModel):
    success: bool
    message: str
    sync_in_progress: bool
    already_running: bool


class RemoveIntegrationResponse(CamelModel):
    success: bool
    message: str
    deleted: dict[str, int]


def _frontend_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL.rstrip('/')}/integrations?{urlencode(params)}",
        status_code=302,
    )


@router.get("/auth-url", response_model=AuthUrlResponse)
async def get_auth_url() -> AuthUrlResponse:
    """Return the GitHub OAuth authorize URL."""
    if not settings.GITHUB_CLIENT_ID:
        raise HTTPException(status_code=500, detail="GitHub OAuth is not configured")
    return AuthUrlResponse(auth_url=build_authorize_url())


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
) -> RedirectResponse:
    """
    OAuth redirect target.

    Exchanges the code, stores the integration, starts the first sync in
    the background and sends the browser back to the frontend.
    """
    if error:
        return _frontend_redirect(success="false", error=error)
    if not code:
        raise HTTPException(status_code=400, detail="No authorization code provided")

    try:
        token: dict[str, Any] = await exchange_code(code)
        async with GitHubClient(token["access_token"]) as client:
            user_info: dict[str, Any] = await client.get_user_info()
        integration = await integration_store.upsert_from_authorization(user_info, token)
    except (OAuthExchangeError, IdentityError) as exc:
        logger.error("GitHub OAuth callback failed: %s", exc)
        return _frontend_redirect(success="false", error=str(exc))

    logger.info("Starting initial sync for user %s", integration.user_id)
    await sync_task_manager.start(integration.user_id)
    return _frontend_redirect(success="true", userId=integration.user_id)


@router.get("/status/{user_id}", response_model=IntegrationStatusResponse)
async def get_integration_status(user_id: str) -> IntegrationStatusResponse:
    integration = await integration_store.get_active(user_id)
    if integration is None:
        return IntegrationStatusResponse(connected=False)

    return IntegrationStatusResponse(
        connected=True,
        connected_at=to_iso8601(integration.connected_at),
        last_synced_at=to_iso8601(integration.last_synced_at),
        username=integration.username,
        avatar_url=integration.avatar_url,
        email=integration.email,
        name=integration.name,
        sync_in_progress=sync_task_manager.is_running(user_id),
        last_error=integration.last_error,
    )


@router.get("/sync-status/{user_id}", response_model=SyncCountsResponse)
async def get_sync_status(user_id: str) -> SyncCountsResponse:
    """Count of mirrored records per collection."""
    counts: dict[str, int] = await record_store.counts_for_user(user_id)
    return SyncCountsResponse(**counts)


@router.get("/rate-limit/{user_id}")
async def get_rate_limit(user_id: str) -> dict[str, Any]:
    integration = await integration_store.get_active(user_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")

    async with GitHubClient(integration.access_token) as client:
        rate_limit: Optional[dict[str, Any]] = await client.get_rate_limit()
    if rate_limit is None:
        raise HTTPException(status_code=502, detail="Could not read GitHub rate limit")
    return rate_limit


@router.post("/resync/{user_id}", response_model=ResyncResponse)
async def resync_integration(user_id: str) -> ResyncResponse:
    """Start a background sync. Joins the running one if there is one."""
    integration = await integration_store.get_active(user_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")

    if not sync_task_manager.is_running(user_id) and await is_sync_locked(user_id):
        # A Celery worker owns this integration right now
        return ResyncResponse(
            success=True,
            message="Sync already in progress",
            sync_in_progress=True,
            already_running=True,
        )

    _, started = await sync_task_manager.start(user_id)
    return ResyncResponse(
        success=True,
        message="Sync started" if started else "Sync already in progress",
        sync_in_progress=True,
        already_running=not started,
    )


@router.delete("/integration/{user_id}", response_model=RemoveIntegrationResponse)
async def remove_integration(
    user_id: str,
    soft: bool = Query(False, description="Deactivate instead of deleting the integration row"),
) -> RemoveIntegrationResponse:
    """Disconnect the integration and delete every mirrored record it owns."""
    await sync_task_manager.cancel(user_id)

    if soft:
        await integration_store.deactivate(user_id)
    else:
        await integration_store.delete(user_id)

    # The integration is gone or inactive now, so a worker run stops at its
    # next write; wait for it to drop the lock before clearing its records
    if not await wait_for_sync_release(user_id):
        logger.warning("Deleting GitHub records for user %s while a sync still holds the lock", user_id)

    deleted: dict[str, int] = await record_store.delete_all_for_user(user_id)
    logger.info(
        "Removed GitHub integration for user %s",
        user_id,
        extra={"soft": soft, "deleted": deleted},
    )
    return RemoveIntegrationResponse(
        success=True,
        message="Integration removed successfully",
        deleted=deleted,
    )
