import asyncio
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from config import settings
from services.github_oauth import OAuthExchangeError, build_authorize_url, exchange_code


def test_authorize_url_carries_client_scope_and_state(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GITHUB_CLIENT_ID", "Iv1.abc")

    url = build_authorize_url(state="xyz")

    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["Iv1.abc"]
    assert query["redirect_uri"] == [settings.GITHUB_REDIRECT_URI]
    assert query["scope"] == [settings.GITHUB_OAUTH_SCOPE]
    assert query["state"] == ["xyz"]


def test_exchange_code_returns_token_payload(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GITHUB_CLIENT_ID", "Iv1.abc")
    monkeypatch.setattr(settings, "GITHUB_CLIENT_SECRET", "shh")
    seen: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path.endswith("/access_token")
        assert request.headers["Accept"] == "application/json"
        return httpx.Response(200, json={"access_token": "gho_new", "token_type": "bearer", "scope": "repo"})

    token = asyncio.run(exchange_code("abc", transport=httpx.MockTransport(_handler)))

    assert token["access_token"] == "gho_new"
    assert seen[0]["code"] == "abc"
    assert seen[0]["client_secret"] == "shh"


def test_exchange_code_error_body_raises() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"error": "bad_verification_code", "error_description": "The code passed is incorrect or expired."},
        )

    with pytest.raises(OAuthExchangeError, match="incorrect or expired"):
        asyncio.run(exchange_code("stale", transport=httpx.MockTransport(_handler)))


def test_exchange_code_http_failure_raises() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(OAuthExchangeError):
        asyncio.run(exchange_code("abc", transport=httpx.MockTransport(_handler)))
