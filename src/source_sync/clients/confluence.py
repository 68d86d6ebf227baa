"""Confluence Cloud REST client."""

from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx

from source_sync.clients.base import ApiClient


def get_cursor(next_link: str | None) -> str | None:
    """Extract the ``cursor`` query parameter of a relative next-page link."""
    if not next_link:
        return None
    values = parse_qs(urlparse(next_link).query).get("cursor")
    return values[0] if values else None


class ConfluenceClient(ApiClient):
    """Search and fetch Confluence pages with basic auth."""

    def __init__(
        self,
        host: str,
        email: str,
        api_key: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.host = host.rstrip("/")
        self.base_url = self.host
        self.email = email
        self.api_key = api_key

    def _get_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": "source-sync/0.1.0"}

    def _auth(self) -> httpx.Auth:
        return httpx.BasicAuth(self.email, self.api_key)

    async def search_pages(
        self, cursor: str | None = None, limit: int = 25
    ) -> tuple[list[dict[str, Any]], str | None]:
        """One page of CQL search results and the cursor of the next one."""
        params: dict[str, Any] = {"cql": "type = 'page'", "limit": limit}
        if cursor:
            params["cursor"] = cursor
        payload = await self.get_json("/wiki/rest/api/content/search", params=params)
        next_link = (payload.get("_links") or {}).get("next")
        return payload.get("results") or [], get_cursor(next_link)

    async def get_page(self, page_id: str) -> dict[str, Any]:
        return await self.get_json(
            f"/wiki/rest/api/content/{page_id}",
            params={"expand": "body.view,version,space"},
        )

    def page_url(self, page: dict[str, Any]) -> str:
        tinyui = (page.get("_links") or {}).get("tinyui") or f"/pages/{page['id']}"
        return f"{self.host}/wiki{tinyui}"
