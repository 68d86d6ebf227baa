"""Notion source."""

from source_sync.clients.notion import NotionClient, page_title
from source_sync.errors import ContentError
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

BLOCK_PREFIXES = {
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "quote": "> ",
    "callout": "> ",
    "toggle": "",
    "paragraph": "",
}


def rich_text(block_value: dict) -> str:
    return "".join(part.get("plain_text", "") for part in block_value.get("rich_text", []))


def render_blocks(blocks: list[dict]) -> str:
    """Render Notion blocks as markdown."""
    lines = []
    for block in blocks:
        kind = block.get("type")
        value = block.get(kind) or {}
        if kind in BLOCK_PREFIXES:
            lines.append(BLOCK_PREFIXES[kind] + rich_text(value))
        elif kind == "to_do":
            mark = "x" if value.get("checked") else " "
            lines.append(f"- [{mark}] {rich_text(value)}")
        elif kind == "code":
            lines.append(f"```{value.get('language', '')}\n{rich_text(value)}\n```")
        elif kind == "divider":
            lines.append("---")
    return "\n\n".join(line for line in lines if line.strip())


class NotionSource(BaseSource):
    """Sync the pages shared with a Notion integration."""

    type = KnowledgeGroupType.NOTION

    def _client(self, group: KnowledgeGroup) -> NotionClient:
        return NotionClient(
            secret=require(group.notion_secret, "Notion secret is required"),
            transport=self.transport,
        )

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        pages, next_cursor = await self._client(group).search_pages(cursor=job.cursor)

        items = []
        for page in pages:
            title = page_title(page)
            if self.is_skipped(group, page["url"], page["id"], title):
                continue
            items.append(DiscoveredItem(url=page["url"], source_page_id=page["id"], title=title))
        return Discovery(items=items, next_cursor=next_cursor)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        if not job.source_page_id:
            raise ContentError("Notion page id is missing")

        client = self._client(group)
        page = await client.get_page(job.source_page_id)
        blocks = await client.get_block_children(job.source_page_id)

        title = page_title(page)
        body = render_blocks(blocks)
        return ItemResult(page=PageContent(title=title, text=f"# {title}\n\n{body}".strip()))
