"""Abstract base source interface for knowledge groups."""

import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from source_sync.errors import ConfigurationError
from source_sync.models import Discovery, GroupJobData, ItemJobData, ItemResult, KnowledgeGroup
from source_sync.models.knowledge import KnowledgeGroupType


class BaseSource(ABC):
    """
    Abstract base class for source adapters.

    ``update_group`` discovers one page of items; the pipeline schedules
    them and decides how pagination continues. ``update_item`` fetches the
    content of one item.
    """

    type: KnowledgeGroupType

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, **options: Any):
        self.transport = transport
        self.options = options

    @abstractmethod
    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        """Discover the items of one page, starting at ``job.cursor``."""
        pass

    @abstractmethod
    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        """Fetch the content of the item at ``job.url``."""
        pass

    def skip_patterns(self, group: KnowledgeGroup) -> list[re.Pattern]:
        """Compile the group's comma-separated skip regex list."""
        if not group.skip_page_regex:
            return []
        patterns = []
        for raw in group.skip_page_regex.split(","):
            raw = raw.strip()
            if not raw:
                continue
            try:
                patterns.append(re.compile(raw))
            except re.error as e:
                raise ConfigurationError(f"Invalid skip regex {raw!r}: {e}") from e
        return patterns

    def is_skipped(self, group: KnowledgeGroup, *values: str | None) -> bool:
        """Whether any skip pattern matches any of the given identifiers."""
        patterns = self.skip_patterns(group)
        return any(
            pattern.search(value) for pattern in patterns for value in values if value
        )


def require(value: str | None, message: str) -> str:
    """Return a required group setting or fail with a configuration error."""
    if not value:
        raise ConfigurationError(message)
    return value
