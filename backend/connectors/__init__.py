"""GitHub connector package: API client, record models, persistence and sync."""
from connectors.github import GitHubClient
from connectors.github_sync import GitHubSyncOrchestrator, SyncReport, sync_integration
from connectors.persistence import RecordStore, UpsertResult

__all__ = [
    "GitHubClient",
    "GitHubSyncOrchestrator",
    "RecordStore",
    "SyncReport",
    "UpsertResult",
    "sync_integration",
]
