"""API clients for the supported sources."""

from source_sync.clients.base import ApiClient, GraphQLClient
from source_sync.clients.confluence import ConfluenceClient
from source_sync.clients.github import GitHubClient
from source_sync.clients.linear import LinearClient
from source_sync.clients.notion import NotionClient
from source_sync.clients.youtube import YouTubeClient

__all__ = [
    "ApiClient",
    "ConfluenceClient",
    "GitHubClient",
    "GraphQLClient",
    "LinearClient",
    "NotionClient",
    "YouTubeClient",
]
