"""YouTube channel and video list sources."""

from source_sync.clients.youtube import YouTubeClient
from source_sync.errors import ConfigurationError
from source_sync.ingestion.sources.base import BaseSource
from source_sync.models import (
    DiscoveredItem,
    Discovery,
    GroupJobData,
    ItemJobData,
    ItemResult,
    KnowledgeGroup,
    PageContent,
)
from source_sync.models.knowledge import KnowledgeGroupType


class YouTubeSource(BaseSource):
    """Shared transcript fetch of the YouTube sources."""

    def _client(self) -> YouTubeClient:
        return YouTubeClient(
            transport=self.transport,
            transcript_fetcher=self.options.get("transcript_fetcher"),
        )

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        # A missing transcript raises ContentError and fails only this item
        title, transcript = await self._client().get_video(job.url)
        return ItemResult(page=PageContent(title=title, text=transcript))


class YouTubeChannelSource(YouTubeSource):
    """Sync every upload of a channel, one listing page per discovery."""

    type = KnowledgeGroupType.YOUTUBE_CHANNEL

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        if not group.url:
            raise ConfigurationError("Group url is required")

        videos, next_page_token = await self._client().list_channel_videos(
            group.url, page_token=job.cursor
        )

        items = [
            DiscoveredItem(url=video["url"], source_page_id=video["id"], title=video["title"])
            for video in videos
            if not self.is_skipped(group, video["url"], video["id"], video["title"])
        ]
        return Discovery(items=items, next_cursor=next_page_token)


class YouTubeVideosSource(YouTubeSource):
    """Sync an explicit list of videos in a single pass."""

    type = KnowledgeGroupType.YOUTUBE_VIDEOS

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        urls = list(dict.fromkeys(url for url in [group.url, *group.urls] if url))
        if not urls:
            raise ConfigurationError("Group has no video URLs")

        return Discovery(
            items=[
                DiscoveredItem(url=url, source_page_id=url)
                for url in urls
                if not self.is_skipped(group, url)
            ]
        )
