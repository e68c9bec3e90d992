"""Exceptions raised by the GitHub client and sync pipeline."""

from __future__ import annotations

from typing import Optional


class GitHubSyncError(RuntimeError):
    """Base class for GitHub sync failures."""


class IdentityError(GitHubSyncError):
    """
    The account's identity or organization list could not be resolved.

    Fatal for a sync run: nothing below the organization level can be
    fetched without it.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResourceFetchError(GitHubSyncError):
    """A single resource unit (one org's repos, one repo's commits, ...) failed to fetch."""

    def __init__(self, message: str, path: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class SyncCancelledError(GitHubSyncError):
    """Raised when a sync should stop because the integration was disconnected."""
