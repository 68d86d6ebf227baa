"""GitHub REST and GraphQL client."""

from typing import Any

import httpx

from source_sync.clients.base import GraphQLClient
from source_sync.config import get_settings

DISCUSSIONS_QUERY = """
query($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    discussions(first: 25, after: $cursor, orderBy: {field: UPDATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        number
        title
        body
        url
        comments(first: 50) {
          nodes { body author { login } }
        }
      }
    }
  }
}
"""

DISCUSSION_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    discussion(number: $number) {
      id
      number
      title
      body
      url
      comments(first: 50) {
        nodes { body author { login } }
      }
    }
  }
}
"""


class GitHubClient(GraphQLClient):
    """Fetch issues, timelines and discussions of a repository."""

    base_url = "https://api.github.com"
    endpoint = "/graphql"

    def __init__(
        self,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.token = token or get_settings().github_token

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "source-sync/0.1.0",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def list_issues(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        page_url: str | None = None,
        per_page: int = 100,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """
        Fetch one page of issues.

        Returns the issues and the URL of the next page from the ``Link``
        header, if any. Pull requests are included, as the API returns them.
        """
        if page_url:
            response = await self.request("GET", page_url)
        else:
            response = await self.request(
                "GET",
                f"/repos/{owner}/{repo}/issues",
                params={
                    "state": state,
                    "per_page": per_page,
                    "sort": "updated",
                    "direction": "desc",
                },
            )
        next_url = response.links.get("next", {}).get("url")
        return response.json(), next_url

    async def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return await self.get_json(f"/repos/{owner}/{repo}/issues/{number}")

    async def get_issue_timeline(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """All timeline events of an issue."""
        events: list[dict[str, Any]] = []
        url: str | None = f"/repos/{owner}/{repo}/issues/{number}/timeline?per_page=100"
        while url:
            response = await self.request("GET", url)
            events.extend(response.json())
            url = response.links.get("next", {}).get("url")
        return events

    async def list_discussions(
        self, owner: str, repo: str, cursor: str | None = None
    ) -> tuple[list[dict[str, Any]], str | None]:
        data = await self.query(
            DISCUSSIONS_QUERY, {"owner": owner, "name": repo, "cursor": cursor}
        )
        repository = data.get("repository") or {}
        discussions = repository.get("discussions") or {}
        page_info = discussions.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        return discussions.get("nodes") or [], next_cursor

    async def get_discussion(self, owner: str, repo: str, number: int) -> dict[str, Any] | None:
        data = await self.query(
            DISCUSSION_QUERY, {"owner": owner, "name": repo, "number": number}
        )
        return (data.get("repository") or {}).get("discussion")
