"""Notion REST client."""

from typing import Any

import httpx

from source_sync.clients.base import ApiClient

NOTION_VERSION = "2022-06-28"


class NotionClient(ApiClient):
    """Search pages shared with an integration and read their blocks."""

    base_url = "https://api.notion.com"

    def __init__(
        self,
        secret: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.secret = secret

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret}",
            "Notion-Version": NOTION_VERSION,
            "User-Agent": "source-sync/0.1.0",
        }

    async def search_pages(
        self, cursor: str | None = None, page_size: int = 50
    ) -> tuple[list[dict[str, Any]], str | None]:
        body: dict[str, Any] = {
            "filter": {"property": "object", "value": "page"},
            "page_size": page_size,
        }
        if cursor:
            body["start_cursor"] = cursor
        response = await self.request("POST", "/v1/search", json=body)
        payload = response.json()
        next_cursor = payload.get("next_cursor") if payload.get("has_more") else None
        return payload.get("results") or [], next_cursor

    async def get_page(self, page_id: str) -> dict[str, Any]:
        return await self.get_json(f"/v1/pages/{page_id}")

    async def get_block_children(self, block_id: str) -> list[dict[str, Any]]:
        """All child blocks of a block or page."""
        blocks: list[dict[str, Any]] = []
        cursor = None
        while True:
            params: dict[str, Any] = {"page_size": 100}
            if cursor:
                params["start_cursor"] = cursor
            payload = await self.get_json(f"/v1/blocks/{block_id}/children", params=params)
            blocks.extend(payload.get("results") or [])
            if not payload.get("has_more"):
                return blocks
            cursor = payload.get("next_cursor")


def page_title(page: dict[str, Any]) -> str:
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title":
            return "".join(t.get("plain_text", "") for t in prop.get("title", [])) or "Untitled"
    return "Untitled"
