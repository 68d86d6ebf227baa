"""Placeholder source for group types that are not synced."""

from source_sync.errors import ConfigurationError
from source_sync.ingestion.sources.base import BaseSource
from source_sync.models import Discovery, GroupJobData, ItemJobData, ItemResult, KnowledgeGroup
from source_sync.models.knowledge import KnowledgeGroupType


class EmptySource(BaseSource):
    """Always fails, so a misrouted group never silently syncs nothing."""

    type = KnowledgeGroupType.UPLOAD

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        raise ConfigurationError(f"Sync is not implemented for {group.type.value} groups")

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        raise ConfigurationError(f"Sync is not implemented for {group.type.value} groups")
