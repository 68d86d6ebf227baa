"""Registration table mapping group types to source adapters."""

from typing import Any

from source_sync.errors import ConfigurationError
from source_sync.ingestion.sources.base import BaseSource
from source_sync.ingestion.sources.confluence import ConfluenceSource
from source_sync.ingestion.sources.empty import EmptySource
from source_sync.ingestion.sources.github_discussions import GitHubDiscussionsSource
from source_sync.ingestion.sources.github_issues import GitHubIssuesSource
from source_sync.ingestion.sources.linear import LinearIssuesSource, LinearProjectsSource
from source_sync.ingestion.sources.notion import NotionSource
from source_sync.ingestion.sources.web import WebSource
from source_sync.ingestion.sources.youtube import YouTubeChannelSource, YouTubeVideosSource
from source_sync.models.knowledge import KnowledgeGroupType

DEFAULT_SOURCES: dict[KnowledgeGroupType, type[BaseSource]] = {
    KnowledgeGroupType.WEB: WebSource,
    KnowledgeGroupType.GITHUB_ISSUES: GitHubIssuesSource,
    KnowledgeGroupType.GITHUB_DISCUSSIONS: GitHubDiscussionsSource,
    KnowledgeGroupType.LINEAR: LinearIssuesSource,
    KnowledgeGroupType.LINEAR_PROJECTS: LinearProjectsSource,
    KnowledgeGroupType.CONFLUENCE: ConfluenceSource,
    KnowledgeGroupType.NOTION: NotionSource,
    KnowledgeGroupType.YOUTUBE_CHANNEL: YouTubeChannelSource,
    KnowledgeGroupType.YOUTUBE_VIDEOS: YouTubeVideosSource,
    KnowledgeGroupType.UPLOAD: EmptySource,
}


class SourceRegistry:
    """
    Resolves a group type to its source adapter.

    Options given to the registry (e.g. an httpx transport) are passed to
    every adapter it creates.
    """

    def __init__(
        self,
        sources: dict[KnowledgeGroupType, type[BaseSource]] | None = None,
        **source_options: Any,
    ):
        self._sources = dict(DEFAULT_SOURCES if sources is None else sources)
        self.source_options = source_options

    def register(self, group_type: KnowledgeGroupType, source_cls: type[BaseSource]) -> None:
        self._sources[group_type] = source_cls

    def validate(self) -> None:
        """Fail when a group type has no adapter."""
        missing = [t.value for t in KnowledgeGroupType if t not in self._sources]
        if missing:
            raise ConfigurationError(f"No source registered for: {', '.join(missing)}")

    def make_source(self, group_type: KnowledgeGroupType | str) -> BaseSource:
        try:
            source_cls = self._sources[KnowledgeGroupType(group_type)]
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Unknown source type: {group_type}") from e
        return source_cls(**self.source_options)

    def list_registered(self) -> list[str]:
        return sorted(t.value for t in self._sources)


_registry: SourceRegistry | None = None


def get_source_registry() -> SourceRegistry:
    """Get the default registry, validated on first use."""
    global _registry
    if _registry is None:
        registry = SourceRegistry()
        registry.validate()
        _registry = registry
    return _registry


def make_source(group_type: KnowledgeGroupType | str) -> BaseSource:
    return get_source_registry().make_source(group_type)
