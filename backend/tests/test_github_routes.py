from datetime import datetime
from types import SimpleNamespace
from typing import Any, Optional

from fastapi.testclient import TestClient

from api.main import app
from api.routes import github as github_routes
from config import settings
from connectors.errors import IdentityError
from services.github_oauth import OAuthExchangeError


client = TestClient(app)

USER_ID = "42"


def _integration(**overrides: Any) -> SimpleNamespace:
    values = {
        "user_id": USER_ID,
        "username": "octocat",
        "avatar_url": "https://avatars.example/u/42",
        "email": "octo@example.com",
        "name": "The Octocat",
        "access_token": "gho_test",
        "connected_at": datetime(2024, 5, 1, 9, 30, 0),
        "last_synced_at": None,
        "last_error": None,
        "is_active": True,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeIntegrationStore:
    def __init__(self, integration: Optional[SimpleNamespace] = None) -> None:
        self.integration = integration
        self.calls: list[tuple[str, str]] = []

    async def get_active(self, user_id: str):
        return self.integration

    async def upsert_from_authorization(self, user_info: dict, token: dict):
        self.calls.append(("upsert", str(user_info["id"])))
        self.integration = _integration(user_id=str(user_info["id"]), access_token=token["access_token"])
        return self.integration

    async def deactivate(self, user_id: str) -> bool:
        self.calls.append(("deactivate", user_id))
        return True

    async def delete(self, user_id: str) -> bool:
        self.calls.append(("delete", user_id))
        return True


class FakeRecordStore:
    def __init__(self) -> None:
        self.deleted_for: list[str] = []
        self.events: list[str] = []

    async def counts_for_user(self, user_id: str) -> dict[str, int]:
        return {
            "organizations": 1,
            "repositories": 3,
            "commits": 120,
            "pullRequests": 14,
            "issues": 9,
            "issueChangelogs": 40,
            "users": 5,
        }

    async def delete_all_for_user(self, user_id: str) -> dict[str, int]:
        self.deleted_for.append(user_id)
        self.events.append("delete_records")
        return {"organizations": 1, "repositories": 3}


class FakeSyncManager:
    def __init__(self, running: bool = False) -> None:
        self.running = running
        self.started: list[str] = []
        self.cancelled: list[str] = []

    async def start(self, user_id: str):
        self.started.append(user_id)
        return None, not self.running

    def is_running(self, user_id: str) -> bool:
        return self.running

    async def cancel(self, user_id: str) -> bool:
        self.cancelled.append(user_id)
        return self.running


class FakeGitHubClient:
    user_info: Any = {"id": 42, "login": "octocat"}
    rate_limit: Any = {"resources": {"core": {"limit": 5000, "remaining": 4990}}}

    def __init__(self, access_token: str) -> None:
        self.access_token = access_token

    async def __aenter__(self) -> "FakeGitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None

    async def get_user_info(self) -> dict:
        if isinstance(self.user_info, Exception):
            raise self.user_info
        return self.user_info

    async def get_rate_limit(self):
        return self.rate_limit


class FakeSyncLock:
    """Redis sync lock as seen from the API process."""

    def __init__(self, locked: bool = False, events: Optional[list[str]] = None) -> None:
        self.locked = locked
        self.events = events if events is not None else []

    async def is_sync_locked(self, user_id: str) -> bool:
        return self.locked

    async def wait_for_sync_release(self, user_id: str, timeout_s=None) -> bool:
        self.events.append("wait")
        self.locked = False
        return True


def _install(monkeypatch, integration=None, running: bool = False, locked: bool = False):
    integrations = FakeIntegrationStore(integration)
    records = FakeRecordStore()
    manager = FakeSyncManager(running=running)
    sync_lock = FakeSyncLock(locked=locked, events=records.events)
    monkeypatch.setattr(github_routes, "integration_store", integrations)
    monkeypatch.setattr(github_routes, "record_store", records)
    monkeypatch.setattr(github_routes, "sync_task_manager", manager)
    monkeypatch.setattr(github_routes, "is_sync_locked", sync_lock.is_sync_locked)
    monkeypatch.setattr(github_routes, "wait_for_sync_release", sync_lock.wait_for_sync_release)
    monkeypatch.setattr(github_routes, "GitHubClient", FakeGitHubClient)
    return integrations, records, manager


def test_auth_url_requires_client_id(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GITHUB_CLIENT_ID", None)

    response = client.get("/api/github/auth-url")

    assert response.status_code == 500


def test_auth_url_points_at_github_authorize(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GITHUB_CLIENT_ID", "Iv1.abc")

    response = client.get("/api/github/auth-url")

    assert response.status_code == 200
    url = response.json()["authUrl"]
    assert url.startswith(f"{settings.GITHUB_OAUTH_BASE}/authorize?")
    assert "client_id=Iv1.abc" in url
    assert "scope=read%3Aorg" in url


def test_callback_stores_integration_and_starts_sync(monkeypatch) -> None:
    integrations, _, manager = _install(monkeypatch)

    async def _exchange(code: str) -> dict:
        assert code == "abc"
        return {"access_token": "gho_new", "token_type": "bearer", "scope": "repo"}

    monkeypatch.setattr(github_routes, "exchange_code", _exchange)

    response = client.get("/api/github/callback", params={"code": "abc"}, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == (
        f"{settings.FRONTEND_URL.rstrip('/')}/integrations?success=true&userId=42"
    )
    assert integrations.calls == [("upsert", "42")]
    assert manager.started == ["42"]


def test_callback_without_code_is_bad_request(monkeypatch) -> None:
    _install(monkeypatch)

    response = client.get("/api/github/callback", follow_redirects=False)

    assert response.status_code == 400


def test_callback_with_provider_error_redirects_with_failure(monkeypatch) -> None:
    _, _, manager = _install(monkeypatch)

    response = client.get(
        "/api/github/callback", params={"error": "access_denied"}, follow_redirects=False
    )

    assert response.status_code == 302
    assert "success=false" in response.headers["location"]
    assert "error=access_denied" in response.headers["location"]
    assert manager.started == []


def test_callback_exchange_failure_redirects_with_failure(monkeypatch) -> None:
    integrations, _, manager = _install(monkeypatch)

    async def _exchange(code: str) -> dict:
        raise OAuthExchangeError("Failed to obtain access token: bad_verification_code")

    monkeypatch.setattr(github_routes, "exchange_code", _exchange)

    response = client.get("/api/github/callback", params={"code": "stale"}, follow_redirects=False)

    assert response.status_code == 302
    assert "success=false" in response.headers["location"]
    assert integrations.calls == []
    assert manager.started == []


def test_callback_identity_failure_redirects_with_failure(monkeypatch) -> None:
    _, _, manager = _install(monkeypatch)

    async def _exchange(code: str) -> dict:
        return {"access_token": "gho_new"}

    monkeypatch.setattr(github_routes, "exchange_code", _exchange)
    monkeypatch.setattr(FakeGitHubClient, "user_info", IdentityError("Failed to fetch user info", 401))

    response = client.get("/api/github/callback", params={"code": "abc"}, follow_redirects=False)

    assert response.status_code == 302
    assert "success=false" in response.headers["location"]
    assert manager.started == []


def test_status_for_unknown_user_is_disconnected(monkeypatch) -> None:
    _install(monkeypatch)

    response = client.get(f"/api/github/status/{USER_ID}")

    assert response.status_code == 200
    assert response.json()["connected"] is False


def test_status_reports_connection_and_sync_progress(monkeypatch) -> None:
    _install(monkeypatch, integration=_integration(last_error="Degraded"), running=True)

    response = client.get(f"/api/github/status/{USER_ID}")

    payload = response.json()
    assert payload["connected"] is True
    assert payload["username"] == "octocat"
    assert payload["connectedAt"] == "2024-05-01T09:30:00Z"
    assert payload["lastSyncedAt"] is None
    assert payload["syncInProgress"] is True
    assert payload["lastError"] == "Degraded"


def test_sync_status_returns_counts_per_collection(monkeypatch) -> None:
    _install(monkeypatch)

    response = client.get(f"/api/github/sync-status/{USER_ID}")

    assert response.status_code == 200
    assert response.json() == {
        "organizations": 1,
        "repositories": 3,
        "commits": 120,
        "pullRequests": 14,
        "issues": 9,
        "issueChangelogs": 40,
        "users": 5,
    }


def test_resync_unknown_integration_is_not_found(monkeypatch) -> None:
    _, _, manager = _install(monkeypatch)

    response = client.post(f"/api/github/resync/{USER_ID}")

    assert response.status_code == 404
    assert manager.started == []


def test_resync_starts_background_sync(monkeypatch) -> None:
    _, _, manager = _install(monkeypatch, integration=_integration())

    response = client.post(f"/api/github/resync/{USER_ID}")

    assert response.status_code == 200
    assert response.json()["alreadyRunning"] is False
    assert manager.started == [USER_ID]


def test_resync_while_running_joins_existing_sync(monkeypatch) -> None:
    _install(monkeypatch, integration=_integration(), running=True)

    response = client.post(f"/api/github/resync/{USER_ID}")

    payload = response.json()
    assert payload["alreadyRunning"] is True
    assert payload["message"] == "Sync already in progress"


def test_resync_while_worker_holds_lock_does_not_start(monkeypatch) -> None:
    _, _, manager = _install(monkeypatch, integration=_integration(), locked=True)

    response = client.post(f"/api/github/resync/{USER_ID}")

    payload = response.json()
    assert response.status_code == 200
    assert payload["alreadyRunning"] is True
    assert manager.started == []


def test_remove_integration_cancels_sync_and_deletes_data(monkeypatch) -> None:
    integrations, records, manager = _install(monkeypatch, integration=_integration())

    response = client.delete(f"/api/github/integration/{USER_ID}")

    assert response.status_code == 200
    assert response.json()["deleted"] == {"organizations": 1, "repositories": 3}
    assert manager.cancelled == [USER_ID]
    assert integrations.calls == [("delete", USER_ID)]
    assert records.deleted_for == [USER_ID]
    assert records.events == ["wait", "delete_records"]


def test_soft_remove_deactivates_integration(monkeypatch) -> None:
    integrations, records, _ = _install(monkeypatch, integration=_integration())

    response = client.delete(f"/api/github/integration/{USER_ID}", params={"soft": "true"})

    assert response.status_code == 200
    assert integrations.calls == [("deactivate", USER_ID)]
    assert records.deleted_for == [USER_ID]


def test_rate_limit_requires_integration(monkeypatch) -> None:
    _install(monkeypatch)

    response = client.get(f"/api/github/rate-limit/{USER_ID}")

    assert response.status_code == 404


def test_rate_limit_passes_through_github_quota(monkeypatch) -> None:
    _install(monkeypatch, integration=_integration())

    response = client.get(f"/api/github/rate-limit/{USER_ID}")

    assert response.status_code == 200
    assert response.json()["resources"]["core"]["remaining"] == 4990


def test_rate_limit_unreadable_is_bad_gateway(monkeypatch) -> None:
    _install(monkeypatch, integration=_integration())
    monkeypatch.setattr(FakeGitHubClient, "rate_limit", None)

    response = client.get(f"/api/github/rate-limit/{USER_ID}")

    assert response.status_code == 502
