"""Models package."""

from source_sync.models.jobs import (
    DiscoveredItem,
    Discovery,
    GroupJobData,
    ItemJobData,
    ItemResult,
    PageContent,
    UrlPage,
)
from source_sync.models.knowledge import (
    Chunk,
    GroupStatus,
    GroupSyncState,
    ItemStatus,
    KnowledgeGroup,
    KnowledgeGroupType,
    ScrapeItem,
    UpdateFrequency,
)

__all__ = [
    "Chunk",
    "DiscoveredItem",
    "Discovery",
    "GroupJobData",
    "GroupStatus",
    "GroupSyncState",
    "ItemJobData",
    "ItemResult",
    "ItemStatus",
    "KnowledgeGroup",
    "KnowledgeGroupType",
    "PageContent",
    "ScrapeItem",
    "UpdateFrequency",
    "UrlPage",
]
