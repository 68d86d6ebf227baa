"""Linear GraphQL client."""

from typing import Any

import httpx

from source_sync.clients.base import GraphQLClient

ISSUES_QUERY = """
query($first: Int!, $after: String, $skipStates: [ID!]) {
  issues(
    first: $first
    after: $after
    orderBy: updatedAt
    filter: { state: { id: { nin: $skipStates } } }
  ) {
    pageInfo { hasNextPage endCursor }
    nodes { id identifier title url }
  }
}
"""

ISSUE_QUERY = """
query($id: String!) {
  issue(id: $id) {
    id
    title
    description
    url
    state { name }
  }
}
"""

COMMENTS_QUERY = """
query($id: String!, $after: String) {
  issue(id: $id) {
    comments(first: 50, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { body user { name } }
    }
  }
}
"""

PROJECTS_QUERY = """
query($first: Int!, $after: String) {
  projects(first: $first, after: $after, orderBy: updatedAt) {
    pageInfo { hasNextPage endCursor }
    nodes { id name url }
  }
}
"""

PROJECT_QUERY = """
query($id: String!) {
  project(id: $id) {
    id
    name
    description
    content
    url
  }
}
"""


class LinearClient(GraphQLClient):
    """Fetch issues, comments and projects from Linear."""

    base_url = "https://api.linear.app"
    endpoint = "/graphql"

    def __init__(
        self,
        api_key: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.api_key = api_key

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": self.api_key,
            "Content-Type": "application/json",
            "User-Agent": "source-sync/0.1.0",
        }

    async def list_issues(
        self,
        skip_state_ids: list[str] | None = None,
        cursor: str | None = None,
        first: int = 10,
    ) -> tuple[list[dict[str, Any]], str | None]:
        data = await self.query(
            ISSUES_QUERY,
            {"first": first, "after": cursor, "skipStates": skip_state_ids or []},
        )
        return _page(data.get("issues"))

    async def get_issue(self, issue_id: str) -> dict[str, Any] | None:
        data = await self.query(ISSUE_QUERY, {"id": issue_id})
        return data.get("issue")

    async def list_comments(self, issue_id: str) -> list[dict[str, Any]]:
        """All comments of an issue, following pagination to the end."""
        comments: list[dict[str, Any]] = []
        cursor = None
        while True:
            data = await self.query(COMMENTS_QUERY, {"id": issue_id, "after": cursor})
            nodes, cursor = _page((data.get("issue") or {}).get("comments"))
            comments.extend(nodes)
            if not cursor:
                return comments

    async def list_projects(
        self, cursor: str | None = None, first: int = 10
    ) -> tuple[list[dict[str, Any]], str | None]:
        data = await self.query(PROJECTS_QUERY, {"first": first, "after": cursor})
        return _page(data.get("projects"))

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        data = await self.query(PROJECT_QUERY, {"id": project_id})
        return data.get("project")


def _page(connection: dict[str, Any] | None) -> tuple[list[dict[str, Any]], str | None]:
    """Nodes of a connection and the cursor of the next page."""
    connection = connection or {}
    page_info = connection.get("pageInfo") or {}
    next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
    return connection.get("nodes") or [], next_cursor
