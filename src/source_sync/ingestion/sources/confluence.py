"""Confluence source."""

from source_sync.clients.confluence import ConfluenceClient
from source_sync.errors import ContentError
from source_sync.ingestion.parser import html_to_markdown
from source_sync.ingestion.sources.base import BaseSource, require
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


class ConfluenceSource(BaseSource):
    """Sync all pages visible to the configured Confluence account."""

    type = KnowledgeGroupType.CONFLUENCE

    def _client(self, group: KnowledgeGroup) -> ConfluenceClient:
        return ConfluenceClient(
            host=require(group.confluence_host, "Confluence host is required"),
            email=require(group.confluence_email, "Confluence email is required"),
            api_key=require(group.confluence_api_key, "Confluence API key is required"),
            transport=self.transport,
        )

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        client = self._client(group)
        pages, next_cursor = await client.search_pages(cursor=job.cursor)

        items = [
            DiscoveredItem(url=client.page_url(page), source_page_id=page["id"], title=page.get("title"))
            for page in pages
            if not self.is_skipped(group, page["id"])
        ]
        return Discovery(items=items, next_cursor=next_cursor)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        if not job.source_page_id:
            raise ContentError("Source page ID is required")

        page = await self._client(group).get_page(job.source_page_id)
        html = ((page.get("body") or {}).get("view") or {}).get("value")
        if not html:
            raise ContentError("Page content not found")

        return ItemResult(
            page=PageContent(title=page.get("title") or "Untitled", text=html_to_markdown(html))
        )
