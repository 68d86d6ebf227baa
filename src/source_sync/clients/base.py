"""Shared HTTP plumbing for source API clients."""

from typing import Any

import httpx

from source_sync.config import get_settings
from source_sync.errors import ConfigurationError, FetchError


class ApiClient:
    """
    Thin async wrapper over httpx for one external API.

    A transport can be injected so tests can serve canned responses with
    ``httpx.MockTransport``.
    """

    base_url = ""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self.transport = transport
        self.timeout = timeout or get_settings().http_timeout_seconds

    def _get_headers(self) -> dict[str, str]:
        return {"User-Agent": "source-sync/0.1.0"}

    def _auth(self) -> httpx.Auth | None:
        return None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_headers(),
            auth=self._auth(),
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping failures to sync errors."""
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise FetchError(f"{method} {url} failed: {e}") from e

        if response.status_code == 401:
            raise ConfigurationError(f"{method} {url} was rejected as unauthorized")
        if response.status_code >= 400:
            raise FetchError(f"{method} {url} returned {response.status_code}")
        return response

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("GET", url, **kwargs)
        return response.json()


class GraphQLClient(ApiClient):
    """Client for a GraphQL endpoint at ``base_url``."""

    endpoint = ""

    async def query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self.request(
            "POST", self.endpoint, json={"query": query, "variables": variables or {}}
        )
        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(e.get("message", "unknown error") for e in payload["errors"])
            raise FetchError(f"GraphQL query failed: {messages}")
        return payload.get("data") or {}
