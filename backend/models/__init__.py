"""Database models package."""
from models.database import Base, get_session, init_db, close_db, get_pool_status, get_engine
from models.integration import GitHubIntegration
from models.github_organization import GitHubOrganization
from models.github_repository import GitHubRepository
from models.github_commit import GitHubCommit
from models.github_pull_request import GitHubPullRequest
from models.github_issue import GitHubIssue
from models.github_timeline_event import GitHubIssueTimelineEvent
from models.github_member import GitHubMember

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_pool_status",
    "get_engine",
    "GitHubIntegration",
    "GitHubOrganization",
    "GitHubRepository",
    "GitHubCommit",
    "GitHubPullRequest",
    "GitHubIssue",
    "GitHubIssueTimelineEvent",
    "GitHubMember",
]
