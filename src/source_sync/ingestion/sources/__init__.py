"""Source adapters."""

from source_sync.ingestion.sources.base import BaseSource
from source_sync.ingestion.sources.confluence import ConfluenceSource
from source_sync.ingestion.sources.empty import EmptySource
from source_sync.ingestion.sources.github_discussions import GitHubDiscussionsSource
from source_sync.ingestion.sources.github_issues import GitHubIssuesSource
from source_sync.ingestion.sources.linear import LinearIssuesSource, LinearProjectsSource
from source_sync.ingestion.sources.notion import NotionSource
from source_sync.ingestion.sources.registry import (
    SourceRegistry,
    get_source_registry,
    make_source,
)
from source_sync.ingestion.sources.web import WebSource
from source_sync.ingestion.sources.youtube import YouTubeChannelSource, YouTubeVideosSource

__all__ = [
    "BaseSource",
    "ConfluenceSource",
    "EmptySource",
    "GitHubDiscussionsSource",
    "GitHubIssuesSource",
    "LinearIssuesSource",
    "LinearProjectsSource",
    "NotionSource",
    "SourceRegistry",
    "WebSource",
    "YouTubeChannelSource",
    "YouTubeVideosSource",
    "get_source_registry",
    "make_source",
]
