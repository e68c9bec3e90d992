"""
GitHub REST client used by the sync pipeline.

Wraps one long-lived ``httpx.AsyncClient`` authenticated with the
integration's OAuth token. List endpoints are walked with ``per_page`` /
``page`` and continuation is inferred from page length: a full page means
there may be more, anything shorter ends the walk.

Only identity and organization resolution are fatal (``IdentityError``).
Every other listing degrades to an empty result on failure, or raises
``ResourceFetchError`` when called with ``strict=True`` so the caller can
record why the unit came back empty.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from config import settings
from connectors.errors import IdentityError, ResourceFetchError

logger = logging.getLogger(__name__)

TIMELINE_ACCEPT: str = "application/vnd.github.mockingbird-preview+json"

# Anything a single GET can fail with: HTTP status, transport, bad JSON, wrong shape
_FETCH_ERRORS: tuple[type[Exception], ...] = (httpx.HTTPError, ValueError, ResourceFetchError)

Sleeper = Callable[[float], Awaitable[Any]]


def _status_of(exc: Exception) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, ResourceFetchError):
        return exc.status_code
    return None


class GitHubClient:
    """Async client for the GitHub endpoints the mirror reads."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        page_delay_ms: Optional[int] = None,
        rate_limit_floor: Optional[int] = None,
        rate_limit_max_wait_s: Optional[float] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.base_url: str = (base_url or settings.GITHUB_API_BASE).rstrip("/")
        self.page_size: int = page_size or settings.GITHUB_PAGE_SIZE
        delay_ms = settings.GITHUB_PAGE_DELAY_MS if page_delay_ms is None else page_delay_ms
        self._page_delay_s: float = delay_ms / 1000.0
        self._rate_limit_floor: int = (
            settings.GITHUB_RATE_LIMIT_FLOOR if rate_limit_floor is None else rate_limit_floor
        )
        self._rate_limit_max_wait_s: float = (
            settings.GITHUB_RATE_LIMIT_MAX_WAIT_S
            if rate_limit_max_wait_s is None
            else rate_limit_max_wait_s
        )
        self._sleep: Sleeper = sleep

        # Tracked from X-RateLimit-* response headers
        self.rate_limit_remaining: Optional[int] = None
        self.rate_limit_reset: Optional[float] = None

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout_s or settings.GITHUB_HTTP_TIMEOUT_S,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the httpx client and release connections."""
        await self._client.aclose()

    # ── HTTP helpers ─────────────────────────────────────────────────────

    async def _wait_for_rate_limit(self) -> None:
        """Sleep until the quota resets once remaining calls hit the floor."""
        if self.rate_limit_remaining is None or self.rate_limit_reset is None:
            return
        if self.rate_limit_remaining > self._rate_limit_floor:
            return
        wait_s: float = min(
            max(self.rate_limit_reset - time.time(), 0.0), self._rate_limit_max_wait_s
        )
        if wait_s > 0:
            logger.warning(
                "GitHub rate limit nearly exhausted, waiting %.1fs",
                wait_s,
                extra={"remaining": self.rate_limit_remaining, "reset": self.rate_limit_reset},
            )
            await self._sleep(wait_s)
        self.rate_limit_remaining = None

    def _track_rate_limit(self, resp: httpx.Response) -> None:
        remaining: str | None = resp.headers.get("X-RateLimit-Remaining")
        reset: str | None = resp.headers.get("X-RateLimit-Reset")
        try:
            if remaining is not None:
                self.rate_limit_remaining = int(remaining)
            if reset is not None:
                self.rate_limit_reset = float(reset)
        except ValueError:
            logger.debug("Ignoring malformed rate limit headers: %s / %s", remaining, reset)

    async def _gh_get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET from the GitHub REST API. Returns parsed JSON."""
        await self._wait_for_rate_limit()
        resp: httpx.Response = await self._client.get(path, params=params or {}, headers=headers)
        self._track_rate_limit(resp)
        resp.raise_for_status()
        return resp.json()

    async def _paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        limit: Optional[int] = None,
        item_filter: Optional[Callable[[dict[str, Any]], bool]] = None,
        headers: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Walk a list endpoint page by page.

        Continues while a page comes back full (raw length before
        ``item_filter``), so an exact multiple of the page size costs one
        trailing empty request. ``limit`` stops the walk once enough items
        are collected and truncates to exactly that many.
        """
        items: list[dict[str, Any]] = []
        page: int = 1
        while True:
            if page > 1:
                await self._sleep(self._page_delay_s)
            batch: Any = await self._gh_get(
                path,
                params={**(params or {}), "per_page": self.page_size, "page": page},
                headers=headers,
            )
            if not isinstance(batch, list):
                raise ResourceFetchError(f"Expected a list from {path}", path=path)

            has_more: bool = len(batch) == self.page_size
            items.extend(batch if item_filter is None else [i for i in batch if item_filter(i)])

            if limit is not None and len(items) >= limit:
                return items[:limit]
            if not has_more:
                return items
            page += 1

    def _fetch_failed(self, what: str, path: str, exc: Exception, strict: bool) -> list[dict[str, Any]]:
        status: Optional[int] = _status_of(exc)
        logger.warning(
            "Failed to fetch %s: %s",
            what,
            exc,
            extra={"path": path, "status_code": status},
        )
        if strict:
            raise ResourceFetchError(f"Failed to fetch {what}: {exc}", path=path, status_code=status) from exc
        return []

    # ── Identity ─────────────────────────────────────────────────────────

    async def get_user_info(self) -> dict[str, Any]:
        """Return the authenticated account (``GET /user``)."""
        try:
            user: Any = await self._gh_get("/user")
        except _FETCH_ERRORS as exc:
            raise IdentityError(f"Failed to fetch user info: {exc}", status_code=_status_of(exc)) from exc
        if not isinstance(user, dict):
            raise IdentityError("Unexpected response from /user")
        return user

    async def list_organizations(self) -> list[dict[str, Any]]:
        """
        Organizations visible to the account, with full detail where possible.

        Primary path is ``/user/orgs``. When that lists nothing (common when
        the OAuth app has not been granted org access) the organizations
        are discovered from the owners of the user's repositories instead.
        """
        try:
            orgs: list[dict[str, Any]] = await self._paginate("/user/orgs")
        except _FETCH_ERRORS as exc:
            raise IdentityError(
                f"Failed to list organizations: {exc}", status_code=_status_of(exc)
            ) from exc

        logger.info("Found %d organizations from /user/orgs", len(orgs))
        if orgs:
            return list(await asyncio.gather(*(self._org_detail_or_summary(org) for org in orgs)))

        return await self._discover_organizations_from_repositories()

    async def _org_detail(self, login: str) -> Optional[dict[str, Any]]:
        try:
            return await self._gh_get(f"/orgs/{login}")
        except _FETCH_ERRORS as exc:
            logger.info("Could not fetch organization %s: %s", login, exc)
            return None

    async def _org_detail_or_summary(self, org: dict[str, Any]) -> dict[str, Any]:
        detail: Optional[dict[str, Any]] = await self._org_detail(org["login"])
        return detail if detail is not None else org

    async def _discover_organizations_from_repositories(self) -> list[dict[str, Any]]:
        logger.info("No organizations listed; discovering them from repository owners")
        user: dict[str, Any] = await self.get_user_info()
        logger.info("Discovering organizations for %s", user.get("login"))

        repos: list[dict[str, Any]] = await self.list_user_repositories()
        logins: list[str] = []
        for repo in repos:
            owner: dict[str, Any] = repo.get("owner") or {}
            login: Optional[str] = owner.get("login")
            if owner.get("type") == "Organization" and login and login not in logins:
                logins.append(login)
        logger.info("Found %d candidate organizations from %d repositories", len(logins), len(repos))

        details = await asyncio.gather(*(self._org_detail(login) for login in logins))
        return [detail for detail in details if detail is not None]

    # ── Repositories ─────────────────────────────────────────────────────

    async def list_user_repositories(self) -> list[dict[str, Any]]:
        """Repositories the user owns, collaborates on, or reaches via org membership."""
        try:
            return await self._paginate(
                "/user/repos",
                {
                    "affiliation": "owner,collaborator,organization_member",
                    "sort": "updated",
                    "direction": "desc",
                },
            )
        except _FETCH_ERRORS as exc:
            logger.warning("Failed to list user repositories, retrying without affiliation: %s", exc)

        try:
            return await self._paginate("/user/repos", {"visibility": "all", "sort": "updated"})
        except _FETCH_ERRORS as exc:
            logger.warning("Retry without affiliation also failed: %s", exc)
            return []

    async def list_org_repositories(self, org: str, *, strict: bool = False) -> list[dict[str, Any]]:
        path: str = f"/orgs/{org}/repos"
        try:
            return await self._paginate(path, {"type": "all"})
        except _FETCH_ERRORS as exc:
            return self._fetch_failed(f"repositories for {org}", path, exc, strict)

    async def list_repository_commits(
        self,
        owner: str,
        repo: str,
        max_commits: Optional[int] = None,
        *,
        strict: bool = False,
    ) -> list[dict[str, Any]]:
        """Most recent commits on the default branch, newest first, at most ``max_commits``."""
        path: str = f"/repos/{owner}/{repo}/commits"
        try:
            return await self._paginate(path, limit=max_commits or settings.SYNC_MAX_COMMITS)
        except _FETCH_ERRORS as exc:
            return self._fetch_failed(f"commits for {owner}/{repo}", path, exc, strict)

    async def list_repository_pull_requests(
        self, owner: str, repo: str, *, strict: bool = False
    ) -> list[dict[str, Any]]:
        path: str = f"/repos/{owner}/{repo}/pulls"
        try:
            return await self._paginate(path, {"state": "all"})
        except _FETCH_ERRORS as exc:
            return self._fetch_failed(f"pull requests for {owner}/{repo}", path, exc, strict)

    async def list_repository_issues(
        self, owner: str, repo: str, *, strict: bool = False
    ) -> list[dict[str, Any]]:
        """Issues in every state. The issues endpoint also returns PRs; those are dropped."""
        path: str = f"/repos/{owner}/{repo}/issues"
        try:
            return await self._paginate(
                path, {"state": "all"}, item_filter=lambda item: "pull_request" not in item
            )
        except _FETCH_ERRORS as exc:
            return self._fetch_failed(f"issues for {owner}/{repo}", path, exc, strict)

    async def list_issue_timeline(
        self, owner: str, repo: str, issue_number: int, *, strict: bool = False
    ) -> list[dict[str, Any]]:
        path: str = f"/repos/{owner}/{repo}/issues/{issue_number}/timeline"
        try:
            return await self._paginate(path, headers={"Accept": TIMELINE_ACCEPT})
        except _FETCH_ERRORS as exc:
            return self._fetch_failed(
                f"timeline for {owner}/{repo}#{issue_number}", path, exc, strict
            )

    # ── Members ──────────────────────────────────────────────────────────

    async def list_org_members(self, org: str, *, strict: bool = False) -> list[dict[str, Any]]:
        """Members of ``org`` with full profiles; a failed profile keeps the summary."""
        path: str = f"/orgs/{org}/members"
        try:
            members: list[dict[str, Any]] = await self._paginate(path)
        except _FETCH_ERRORS as exc:
            return self._fetch_failed(f"members for {org}", path, exc, strict)

        return list(await asyncio.gather(*(self._member_profile(m) for m in members)))

    async def _member_profile(self, member: dict[str, Any]) -> dict[str, Any]:
        try:
            profile: Any = await self._gh_get(f"/users/{member['login']}")
        except _FETCH_ERRORS as exc:
            logger.info("Could not fetch profile for %s: %s", member.get("login"), exc)
            return member
        return profile if isinstance(profile, dict) else member

    # ── Diagnostics ──────────────────────────────────────────────────────

    async def get_rate_limit(self) -> Optional[dict[str, Any]]:
        """Current quota from ``GET /rate_limit``, or None if it can't be read."""
        try:
            return await self._gh_get("/rate_limit")
        except _FETCH_ERRORS as exc:
            logger.warning("Failed to fetch rate limit: %s", exc)
            return None
