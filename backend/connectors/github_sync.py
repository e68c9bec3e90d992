"""
GitHub account sync pipeline.

Walks one integration's hierarchy sequentially:

    organizations
      └─ repositories
           ├─ commits (capped)
           ├─ pull requests
           └─ issues ─ timelines (first N issues)
      └─ members

Each level is persisted before descending to the next. Failures below the
organization level are isolated to the unit that failed (one org's repo
list, one repo's commits, one issue's timeline, ...) and recorded as a
degraded :class:`UnitResult`; the walk carries on. Only identity and
organization resolution abort the run.

The integration is re-read before every write. A disconnect observed at any
of those checkpoints cancels the run without stamping ``last_synced_at``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence

from pydantic import ValidationError

from config import settings, to_iso8601
from connectors.errors import IdentityError, ResourceFetchError, SyncCancelledError
from connectors.github import GitHubClient
from connectors.models import (
    CommitRecord,
    EntityKind,
    IssueRecord,
    MemberRecord,
    MirrorRecord,
    OrganizationRecord,
    PullRequestRecord,
    RepositoryRecord,
    TimelineEventRecord,
)
from connectors.persistence import RecordStore, UpsertResult
from services.integration_store import IntegrationStore

logger = logging.getLogger(__name__)

# Degraded units kept verbatim in the stored summary
MAX_DEGRADED_IN_SUMMARY: int = 25


class UnitStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    DEGRADED = "degraded"


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ALREADY_RUNNING = "already_running"


@dataclass
class UnitResult:
    """Outcome of fetching and persisting one resource kind for one scope."""

    kind: EntityKind
    scope: str
    status: UnitStatus
    fetched: int = 0
    upsert: UpsertResult = field(default_factory=UpsertResult)
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "scope": self.scope,
            "status": self.status.value,
            "fetched": self.fetched,
            **self.upsert.to_dict(),
            "reason": self.reason,
        }


@dataclass
class SyncReport:
    """Everything one run did, unit by unit."""

    user_id: str
    status: SyncStatus = SyncStatus.COMPLETED
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    units: list[UnitResult] = field(default_factory=list)
    error: Optional[str] = None

    def add(self, unit: UnitResult) -> UnitResult:
        self.units.append(unit)
        return unit

    def finish(self, status: Optional[SyncStatus] = None, error: Optional[str] = None) -> "SyncReport":
        if status is not None:
            self.status = status
        if error is not None:
            self.error = error
        self.finished_at = datetime.utcnow()
        return self

    @property
    def counts(self) -> dict[str, int]:
        """Records written per kind (``EntityKind.stats_key``)."""
        totals: dict[str, int] = {kind.stats_key: 0 for kind in EntityKind}
        for unit in self.units:
            totals[unit.kind.stats_key] += unit.upsert.written
        return totals

    @property
    def degraded_units(self) -> list[UnitResult]:
        return [unit for unit in self.units if unit.status is UnitStatus.DEGRADED]

    @property
    def failed_records(self) -> int:
        return sum(unit.upsert.failed for unit in self.units)

    def summary(self) -> dict[str, Any]:
        """Compact form stored on the integration as ``sync_stats``."""
        degraded = self.degraded_units
        return {
            "status": self.status.value,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "counts": self.counts,
            "failed_records": self.failed_records,
            "degraded_count": len(degraded),
            "degraded": [unit.to_dict() for unit in degraded[:MAX_DEGRADED_IN_SUMMARY]],
            "error": self.error,
        }


class IntegrationStatusSource(Protocol):
    """The slice of :class:`IntegrationStore` the pipeline needs."""

    async def get(self, user_id: str) -> Any: ...

    async def mark_synced(self, user_id: str, stats: Optional[dict[str, Any]] = None) -> None: ...

    async def record_error(self, user_id: str, error: str) -> None: ...


class GitHubSyncOrchestrator:
    """Runs the sync for one integration using an already-authenticated client."""

    def __init__(
        self,
        client: GitHubClient,
        records: RecordStore,
        integrations: IntegrationStatusSource,
        *,
        max_commits: Optional[int] = None,
        timeline_issue_limit: Optional[int] = None,
    ) -> None:
        self._client = client
        self._records = records
        self._integrations = integrations
        self._max_commits: int = max_commits or settings.SYNC_MAX_COMMITS
        self._timeline_issue_limit: int = (
            settings.SYNC_TIMELINE_ISSUE_LIMIT
            if timeline_issue_limit is None
            else timeline_issue_limit
        )

    async def run(self, user_id: str) -> SyncReport:
        """
        Sync everything visible to ``user_id``'s token.

        Returns the report for completed and cancelled runs. Identity failures
        are recorded on the integration and re-raised; ``last_synced_at`` is
        left untouched in that case.
        """
        report = SyncReport(user_id=user_id)
        logger.info("Starting GitHub sync", extra={"user_id": user_id})

        try:
            await self._sync(report)
            # A disconnect during the last unit must not be stamped as a sync
            await self.ensure_sync_active(user_id, "finalize")
        except SyncCancelledError as exc:
            report.finish(SyncStatus.CANCELLED, str(exc))
            logger.info("GitHub sync cancelled for user %s: %s", user_id, exc)
            return report
        except IdentityError as exc:
            report.finish(SyncStatus.FAILED, str(exc))
            logger.error("GitHub sync failed for user %s: %s", user_id, exc)
            await self._integrations.record_error(user_id, str(exc))
            raise

        report.finish(SyncStatus.COMPLETED)
        await self._integrations.mark_synced(user_id, report.summary())
        logger.info(
            "GitHub sync completed for user %s",
            user_id,
            extra={
                "user_id": user_id,
                "counts": report.counts,
                "degraded_units": len(report.degraded_units),
            },
        )
        return report

    async def ensure_sync_active(self, user_id: str, stage: str) -> None:
        """Stop in-flight syncs when the integration has been disconnected."""
        integration = await self._integrations.get(user_id)
        if integration is None:
            logger.info(
                "Sync cancelled because integration row is missing",
                extra={"user_id": user_id, "stage": stage},
            )
            raise SyncCancelledError(f"GitHub integration disconnected during sync ({stage})")
        if not integration.is_active:
            logger.info(
                "Sync cancelled because integration was deactivated",
                extra={"user_id": user_id, "stage": stage},
            )
            raise SyncCancelledError(f"GitHub integration deactivated during sync ({stage})")

    # ── Walk ─────────────────────────────────────────────────────────────

    async def _sync(self, report: SyncReport) -> None:
        user_id: str = report.user_id
        orgs: list[dict[str, Any]] = await self._client.list_organizations()
        logger.info("Found %d organizations", len(orgs), extra={"user_id": user_id})

        if not orgs:
            logger.info("No organizations found for user %s; nothing to mirror", user_id)
            return

        for org in orgs:
            if not org.get("login"):
                logger.warning("Skipping organization without a login: %s", org.get("id"))
                continue
            await self._sync_organization(report, org)

    async def _sync_organization(self, report: SyncReport, org: dict[str, Any]) -> None:
        user_id: str = report.user_id
        login: str = org["login"]

        await self._persist(
            report, EntityKind.ORGANIZATION, login, [org],
            lambda item: OrganizationRecord.from_api(user_id, item),
        )

        repos: Optional[list[dict[str, Any]]] = await self._fetch(
            report, EntityKind.REPOSITORY, login,
            self._client.list_org_repositories(login, strict=True),
        )
        if repos:
            repo_unit = report.add(
                UnitResult(EntityKind.REPOSITORY, login, UnitStatus.OK, fetched=len(repos))
            )
            for repo in repos:
                await self.ensure_sync_active(user_id, f"repository:{login}/{repo.get('name')}")
                repo_unit.upsert = repo_unit.upsert + await self._upsert_items(
                    EntityKind.REPOSITORY, [repo],
                    lambda item: RepositoryRecord.from_api(user_id, login, item),
                )
                if repo.get("name"):
                    await self._sync_repository(report, login, repo["name"])
        elif repos is not None:
            report.add(UnitResult(EntityKind.REPOSITORY, login, UnitStatus.EMPTY))
            logger.info("No repositories found for %s", login)

        members = await self._fetch(
            report, EntityKind.MEMBER, login,
            self._client.list_org_members(login, strict=True),
        )
        if members is not None:
            await self._persist(
                report, EntityKind.MEMBER, login, members,
                lambda item: MemberRecord.from_api(user_id, login, item),
            )

    async def _sync_repository(self, report: SyncReport, org: str, repo: str) -> None:
        user_id: str = report.user_id
        scope: str = f"{org}/{repo}"

        commits = await self._fetch(
            report, EntityKind.COMMIT, scope,
            self._client.list_repository_commits(org, repo, self._max_commits, strict=True),
        )
        if commits is not None:
            await self._persist(
                report, EntityKind.COMMIT, scope, commits,
                lambda item: CommitRecord.from_api(user_id, org, repo, item),
            )

        pulls = await self._fetch(
            report, EntityKind.PULL_REQUEST, scope,
            self._client.list_repository_pull_requests(org, repo, strict=True),
        )
        if pulls is not None:
            await self._persist(
                report, EntityKind.PULL_REQUEST, scope, pulls,
                lambda item: PullRequestRecord.from_api(user_id, org, repo, item),
            )

        issues = await self._fetch(
            report, EntityKind.ISSUE, scope,
            self._client.list_repository_issues(org, repo, strict=True),
        )
        if not issues:
            if issues is not None:
                report.add(UnitResult(EntityKind.ISSUE, scope, UnitStatus.EMPTY))
            return
        await self._persist(
            report, EntityKind.ISSUE, scope, issues,
            lambda item: IssueRecord.from_api(user_id, org, repo, item),
        )

        # Timelines are one request per issue; only the first N in API order
        for issue in issues[: self._timeline_issue_limit]:
            number: Optional[int] = issue.get("number")
            if number is None:
                continue
            events = await self._fetch(
                report, EntityKind.TIMELINE_EVENT, f"{scope}#{number}",
                self._client.list_issue_timeline(org, repo, number, strict=True),
            )
            if events is not None:
                await self._persist(
                    report, EntityKind.TIMELINE_EVENT, f"{scope}#{number}", events,
                    lambda item, n=number: TimelineEventRecord.from_api(user_id, org, repo, n, item),
                )

    # ── Units ────────────────────────────────────────────────────────────

    async def _fetch(
        self,
        report: SyncReport,
        kind: EntityKind,
        scope: str,
        fetch: Awaitable[list[dict[str, Any]]],
    ) -> Optional[list[dict[str, Any]]]:
        """Await one listing. A failure is recorded as a degraded unit and yields None."""
        try:
            items: list[dict[str, Any]] = await fetch
        except ResourceFetchError as exc:
            report.add(UnitResult(kind, scope, UnitStatus.DEGRADED, reason=str(exc)))
            logger.warning(
                "Degraded %s for %s: %s",
                kind.value,
                scope,
                exc,
                extra={"user_id": report.user_id, "kind": kind.value, "scope": scope},
            )
            return None
        logger.info("Found %d %s for %s", len(items), kind.value, scope)
        return items

    async def _persist(
        self,
        report: SyncReport,
        kind: EntityKind,
        scope: str,
        items: Sequence[dict[str, Any]],
        build: Callable[[dict[str, Any]], MirrorRecord],
    ) -> UnitResult:
        if not items:
            return report.add(UnitResult(kind, scope, UnitStatus.EMPTY))
        await self.ensure_sync_active(report.user_id, f"{kind.value}:{scope}")
        result: UpsertResult = await self._upsert_items(kind, items, build)
        return report.add(UnitResult(kind, scope, UnitStatus.OK, fetched=len(items), upsert=result))

    async def _upsert_items(
        self,
        kind: EntityKind,
        items: Sequence[dict[str, Any]],
        build: Callable[[dict[str, Any]], MirrorRecord],
    ) -> UpsertResult:
        records: list[MirrorRecord] = []
        malformed: int = 0
        for item in items:
            try:
                records.append(build(item))
            except (KeyError, TypeError, ValidationError) as exc:
                malformed += 1
                logger.warning("Skipping malformed %s item: %s", kind.value, exc)

        result: UpsertResult = await self._records.upsert_many(records) if records else UpsertResult()
        result.failed += malformed
        return result


async def sync_integration(
    integration: Any,
    *,
    records: Optional[RecordStore] = None,
    integrations: Optional[IntegrationStore] = None,
) -> SyncReport:
    """Open a client with the integration's token and run the pipeline once."""
    async with GitHubClient(integration.access_token) as client:
        orchestrator = GitHubSyncOrchestrator(
            client,
            records or RecordStore(),
            integrations or IntegrationStore(),
        )
        return await orchestrator.run(integration.user_id)
