import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace

from connectors.errors import IdentityError
from connectors.github_sync import SyncReport, SyncStatus
from services import sync_runner
from services.sync_runner import SyncTaskManager


class FakeLock:
    """Shared in-memory stand-in for RedisSyncLock."""

    held: set[str] = set()
    closed: int = 0

    def __init__(self, *args, **kwargs) -> None:
        pass

    @asynccontextmanager
    async def hold(self, user_id: str):
        if user_id in FakeLock.held:
            yield False
            return
        FakeLock.held.add(user_id)
        try:
            yield True
        finally:
            FakeLock.held.discard(user_id)

    async def is_held(self, user_id: str) -> bool:
        return user_id in FakeLock.held

    async def close(self) -> None:
        FakeLock.closed += 1


def _patch_lock(monkeypatch) -> None:
    monkeypatch.setattr(sync_runner, "RedisSyncLock", FakeLock)
    monkeypatch.setattr(FakeLock, "held", set())
    monkeypatch.setattr(FakeLock, "closed", 0)


def _fresh_manager(monkeypatch, sync) -> SyncTaskManager:
    monkeypatch.setattr(SyncTaskManager, "_instance", None)
    return SyncTaskManager(sync=sync)


def test_second_trigger_joins_running_sync(monkeypatch) -> None:
    calls: list[str] = []

    async def _run() -> None:
        release = asyncio.Event()

        async def _sync(user_id: str) -> SyncReport:
            calls.append(user_id)
            await release.wait()
            return SyncReport(user_id=user_id)

        manager = _fresh_manager(monkeypatch, _sync)
        first, started_first = await manager.start("1")
        second, started_second = await manager.start("1")

        assert started_first is True
        assert started_second is False
        assert first is second
        assert manager.is_running("1")

        release.set()
        report = await first
        assert report.user_id == "1"
        assert not manager.is_running("1")
        assert manager._running_tasks == {}

        third, started_third = await manager.start("1")
        assert started_third is True
        await third

    asyncio.run(_run())

    assert calls == ["1", "1"]


def test_different_integrations_run_independently(monkeypatch) -> None:
    async def _run() -> None:
        release = asyncio.Event()

        async def _sync(user_id: str) -> SyncReport:
            await release.wait()
            return SyncReport(user_id=user_id)

        manager = _fresh_manager(monkeypatch, _sync)
        _, started_a = await manager.start("a")
        _, started_b = await manager.start("b")
        assert started_a and started_b
        release.set()
        await manager.shutdown()

    asyncio.run(_run())


def test_cancel_stops_running_sync(monkeypatch) -> None:
    async def _run() -> None:
        async def _sync(user_id: str) -> SyncReport:
            await asyncio.sleep(60)
            return SyncReport(user_id=user_id)

        manager = _fresh_manager(monkeypatch, _sync)
        task, _ = await manager.start("1")
        await asyncio.sleep(0)

        assert await manager.cancel("1") is True
        assert task.cancelled()
        assert not manager.is_running("1")
        assert await manager.cancel("1") is False

    asyncio.run(_run())


def test_failed_sync_is_logged_not_raised(monkeypatch) -> None:
    async def _run() -> None:
        async def _boom(user_id: str) -> SyncReport:
            raise RuntimeError("database unavailable")

        async def _bad_token(user_id: str) -> SyncReport:
            raise IdentityError("Failed to fetch user info: 401", status_code=401)

        manager = _fresh_manager(monkeypatch, _boom)
        task, _ = await manager.start("1")
        assert await task is None

        manager._sync = _bad_token
        task, _ = await manager.start("1")
        assert await task is None

    asyncio.run(_run())


def test_run_integration_sync_skips_missing_integration(monkeypatch) -> None:
    class _NoIntegrations:
        async def get_active(self, user_id: str):
            return None

    async def _unexpected(integration):
        raise AssertionError("sync should not run without an integration")

    _patch_lock(monkeypatch)
    monkeypatch.setattr(sync_runner, "IntegrationStore", _NoIntegrations)
    monkeypatch.setattr(sync_runner, "sync_integration", _unexpected)

    assert asyncio.run(sync_runner.run_integration_sync("1")) is None
    assert FakeLock.held == set()
    assert FakeLock.closed == 1


def test_start_does_not_run_pipeline_while_another_process_holds_lock(monkeypatch) -> None:
    class _Integrations:
        async def get_active(self, user_id: str):
            return SimpleNamespace(user_id=user_id, access_token="gho_test")

    async def _unexpected(integration):
        raise AssertionError("pipeline should not run while the lock is held elsewhere")

    _patch_lock(monkeypatch)
    monkeypatch.setattr(sync_runner, "IntegrationStore", _Integrations)
    monkeypatch.setattr(sync_runner, "sync_integration", _unexpected)
    FakeLock.held.add("42")

    async def _run() -> SyncReport:
        manager = _fresh_manager(monkeypatch, sync_runner.run_integration_sync)
        task, started = await manager.start("42")
        assert started is True
        return await task

    report = asyncio.run(_run())

    assert report.status is SyncStatus.ALREADY_RUNNING
    assert FakeLock.held == {"42"}


def test_run_integration_sync_holds_lock_for_the_whole_run(monkeypatch) -> None:
    seen: list[bool] = []

    class _Integrations:
        async def get_active(self, user_id: str):
            return SimpleNamespace(user_id=user_id, access_token="gho_test")

    async def _sync(integration) -> SyncReport:
        seen.append(integration.user_id in FakeLock.held)
        return SyncReport(user_id=integration.user_id).finish(SyncStatus.COMPLETED)

    _patch_lock(monkeypatch)
    monkeypatch.setattr(sync_runner, "IntegrationStore", _Integrations)
    monkeypatch.setattr(sync_runner, "sync_integration", _sync)

    report = asyncio.run(sync_runner.run_integration_sync("42"))

    assert report.status is SyncStatus.COMPLETED
    assert seen == [True]
    assert FakeLock.held == set()
    assert FakeLock.closed == 1


def test_is_sync_locked_reflects_other_holders(monkeypatch) -> None:
    _patch_lock(monkeypatch)

    assert asyncio.run(sync_runner.is_sync_locked("42")) is False
    FakeLock.held.add("42")
    assert asyncio.run(sync_runner.is_sync_locked("42")) is True
