"""
Entity kinds and Pydantic record models for the GitHub mirror.

The sync pipeline turns raw API objects into these records and hands them
to :class:`connectors.persistence.RecordStore`, which upserts them into the
table for their kind. Each record carries its natural-key fields explicitly,
alongside the untouched API object in ``payload``.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from models.github_commit import GitHubCommit
from models.github_issue import GitHubIssue
from models.github_member import GitHubMember
from models.github_mirror import MirroredRecordMixin
from models.github_organization import GitHubOrganization
from models.github_pull_request import GitHubPullRequest
from models.github_repository import GitHubRepository
from models.github_timeline_event import GitHubIssueTimelineEvent


class EntityKind(str, Enum):
    """The closed set of mirrored kinds. Values are the public collection names."""

    ORGANIZATION = "organizations"
    REPOSITORY = "repositories"
    COMMIT = "commits"
    PULL_REQUEST = "pull-requests"
    ISSUE = "issues"
    TIMELINE_EVENT = "issue-changelogs"
    MEMBER = "users"

    @property
    def model(self) -> type[MirroredRecordMixin]:
        return _KIND_MODELS[self]

    @property
    def stats_key(self) -> str:
        """camelCase key used in sync-status and sync_stats payloads."""
        return _KIND_STATS_KEYS[self]

    @classmethod
    def from_collection(cls, name: str) -> "EntityKind":
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown collection: {name}") from None


_KIND_MODELS: dict[EntityKind, type[MirroredRecordMixin]] = {
    EntityKind.ORGANIZATION: GitHubOrganization,
    EntityKind.REPOSITORY: GitHubRepository,
    EntityKind.COMMIT: GitHubCommit,
    EntityKind.PULL_REQUEST: GitHubPullRequest,
    EntityKind.ISSUE: GitHubIssue,
    EntityKind.TIMELINE_EVENT: GitHubIssueTimelineEvent,
    EntityKind.MEMBER: GitHubMember,
}

_KIND_STATS_KEYS: dict[EntityKind, str] = {
    EntityKind.ORGANIZATION: "organizations",
    EntityKind.REPOSITORY: "repositories",
    EntityKind.COMMIT: "commits",
    EntityKind.PULL_REQUEST: "pullRequests",
    EntityKind.ISSUE: "issues",
    EntityKind.TIMELINE_EVENT: "issueChangelogs",
    EntityKind.MEMBER: "users",
}


def timeline_event_id(event: dict[str, Any]) -> str:
    """
    Stable identifier for a timeline event.

    Most events have a numeric ``id``. ``committed`` events only carry a
    ``sha`` and ``cross-referenced`` events carry neither, so fall back to
    ``node_id``, then the sha, then a hash of the canonical JSON body.
    """
    if event.get("id") is not None:
        return str(event["id"])
    if event.get("node_id"):
        return str(event["node_id"])
    if event.get("sha"):
        return f"sha:{event['sha']}"
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)
    return f"hash:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class MirrorRecord(BaseModel):
    """Fields shared by every mirrored record."""

    kind: ClassVar[EntityKind]

    user_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    def natural_key(self) -> tuple[Any, ...]:
        return tuple(getattr(self, column) for column in self.kind.model.NATURAL_KEY)

    def to_row(self) -> dict[str, Any]:
        """Column values for an INSERT into this kind's table."""
        return self.model_dump()


class OrganizationRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.ORGANIZATION

    login: str

    @classmethod
    def from_api(cls, user_id: str, org: dict[str, Any]) -> "OrganizationRecord":
        return cls(user_id=user_id, login=org["login"], payload=org)


class RepositoryRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.REPOSITORY

    org_login: str
    name: str

    @classmethod
    def from_api(cls, user_id: str, org_login: str, repo: dict[str, Any]) -> "RepositoryRecord":
        return cls(user_id=user_id, org_login=org_login, name=repo["name"], payload=repo)


class CommitRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.COMMIT

    org_login: str
    repo_name: str
    sha: str

    @classmethod
    def from_api(
        cls, user_id: str, org_login: str, repo_name: str, commit: dict[str, Any]
    ) -> "CommitRecord":
        return cls(
            user_id=user_id,
            org_login=org_login,
            repo_name=repo_name,
            sha=commit["sha"],
            payload=commit,
        )


class PullRequestRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.PULL_REQUEST

    org_login: str
    repo_name: str
    number: int

    @classmethod
    def from_api(
        cls, user_id: str, org_login: str, repo_name: str, pull: dict[str, Any]
    ) -> "PullRequestRecord":
        return cls(
            user_id=user_id,
            org_login=org_login,
            repo_name=repo_name,
            number=pull["number"],
            payload=pull,
        )


class IssueRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.ISSUE

    org_login: str
    repo_name: str
    number: int

    @classmethod
    def from_api(
        cls, user_id: str, org_login: str, repo_name: str, issue: dict[str, Any]
    ) -> "IssueRecord":
        return cls(
            user_id=user_id,
            org_login=org_login,
            repo_name=repo_name,
            number=issue["number"],
            payload=issue,
        )


class TimelineEventRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.TIMELINE_EVENT

    org_login: str
    repo_name: str
    issue_number: int
    event_id: str

    @classmethod
    def from_api(
        cls,
        user_id: str,
        org_login: str,
        repo_name: str,
        issue_number: int,
        event: dict[str, Any],
    ) -> "TimelineEventRecord":
        return cls(
            user_id=user_id,
            org_login=org_login,
            repo_name=repo_name,
            issue_number=issue_number,
            event_id=timeline_event_id(event),
            payload=event,
        )


class MemberRecord(MirrorRecord):
    kind: ClassVar[EntityKind] = EntityKind.MEMBER

    org_login: str
    login: str

    @classmethod
    def from_api(cls, user_id: str, org_login: str, member: dict[str, Any]) -> "MemberRecord":
        return cls(user_id=user_id, org_login=org_login, login=member["login"], payload=member)
