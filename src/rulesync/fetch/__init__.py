"""Remote repository access."""

from rulesync.fetch.github import GitHubClient, GitHubClientError
from rulesync.fetch.protocols import RemoteClientError, RemoteEntry, RemoteRepositoryClient

__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "RemoteClientError",
    "RemoteEntry",
    "RemoteRepositoryClient",
]
