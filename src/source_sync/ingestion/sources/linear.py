"""Linear issue and project sources."""

from source_sync.clients.linear import LinearClient
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

PAGE_SIZE = 10


class LinearSource(BaseSource):
    """Shared client setup of the Linear sources."""

    def _client(self, group: KnowledgeGroup) -> LinearClient:
        api_key = require(group.linear_api_key, "Linear API key is required")
        return LinearClient(api_key=api_key, transport=self.transport)


class LinearIssuesSource(LinearSource):
    """Sync Linear issues, excluding the configured workflow states."""

    type = KnowledgeGroupType.LINEAR

    def skip_statuses(self, group: KnowledgeGroup) -> list[str]:
        raw = group.linear_skip_issue_statuses or ""
        return [status.strip() for status in raw.split(",") if status.strip()]

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        issues, next_cursor = await self._client(group).list_issues(
            skip_state_ids=self.skip_statuses(group), cursor=job.cursor, first=PAGE_SIZE
        )

        items = [
            DiscoveredItem(url=issue["url"], source_page_id=issue["id"], title=issue.get("title"))
            for issue in issues
            if not self.is_skipped(group, issue["url"], issue.get("identifier"), issue.get("title"))
        ]
        return Discovery(items=items, next_cursor=next_cursor)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        if not job.source_page_id:
            raise ContentError("Linear issue id is missing")

        client = self._client(group)
        issue = await client.get_issue(job.source_page_id)
        if not issue:
            raise ContentError("Issue not found")

        parts = [f"# {issue.get('title')}\n\n{issue.get('description') or ''}"]

        comments = await client.list_comments(job.source_page_id)
        if comments:
            lines = [
                f"{(comment.get('user') or {}).get('name')}: {comment.get('body')}"
                for comment in comments
            ]
            parts.append("### Comments\n" + "\n\n".join(lines))

        status = (issue.get("state") or {}).get("name")
        if status:
            parts.append(f"Status: {status}")

        return ItemResult(
            page=PageContent(title=issue.get("title") or "Untitled", text="\n\n".join(parts))
        )


class LinearProjectsSource(LinearSource):
    """Sync Linear projects."""

    type = KnowledgeGroupType.LINEAR_PROJECTS

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        projects, next_cursor = await self._client(group).list_projects(
            cursor=job.cursor, first=PAGE_SIZE
        )

        items = [
            DiscoveredItem(url=project["url"], source_page_id=project["id"], title=project.get("name"))
            for project in projects
            if not self.is_skipped(group, project["url"], project.get("name"))
        ]
        return Discovery(items=items, next_cursor=next_cursor)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        if not job.source_page_id:
            raise ContentError("Linear project id is missing")

        project = await self._client(group).get_project(job.source_page_id)
        if not project:
            raise ContentError("Project not found")

        parts = [f"# {project.get('name')}"]
        for field in ("description", "content"):
            if project.get(field):
                parts.append(project[field])

        return ItemResult(
            page=PageContent(title=project.get("name") or "Untitled", text="\n\n".join(parts))
        )
