"""
GitHub OAuth app flow: authorize URL and code-for-token exchange.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from config import settings

logger = logging.getLogger(__name__)


class OAuthExchangeError(RuntimeError):
    """The authorization code could not be exchanged for an access token."""


def build_authorize_url(state: Optional[str] = None) -> str:
    """URL the browser is sent to so the user can grant access."""
    params: dict[str, str] = {
        "client_id": settings.GITHUB_CLIENT_ID or "",
        "redirect_uri": settings.GITHUB_REDIRECT_URI,
        "scope": settings.GITHUB_OAUTH_SCOPE,
    }
    if state:
        params["state"] = state
    return f"{settings.GITHUB_OAUTH_BASE}/authorize?{urlencode(params)}"


async def exchange_code(
    code: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, Any]:
    """
    Exchange an authorization code for a token.

    Returns GitHub's token payload (``access_token``, ``token_type``,
    ``scope`` and, for expiring tokens, ``refresh_token``).
    """
    async with httpx.AsyncClient(timeout=settings.GITHUB_HTTP_TIMEOUT_S, transport=transport) as client:
        try:
            resp: httpx.Response = await client.post(
                f"{settings.GITHUB_OAUTH_BASE}/access_token",
                headers={"Accept": "application/json"},
                json={
                    "client_id": settings.GITHUB_CLIENT_ID,
                    "client_secret": settings.GITHUB_CLIENT_SECRET,
                    "code": code,
                    "redirect_uri": settings.GITHUB_REDIRECT_URI,
                },
            )
            resp.raise_for_status()
            payload: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("GitHub token exchange failed: %s", exc)
            raise OAuthExchangeError(f"Token exchange failed: {exc}") from exc

    # GitHub reports a bad/expired code as 200 with an "error" field
    if not payload.get("access_token"):
        detail: str = payload.get("error_description") or payload.get("error") or "no access_token"
        raise OAuthExchangeError(f"Failed to obtain access token: {detail}")
    return payload
