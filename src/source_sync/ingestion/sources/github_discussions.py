"""GitHub Discussions source."""

from source_sync.clients.github import GitHubClient
from source_sync.errors import ContentError
from source_sync.ingestion.sources.base import BaseSource
from source_sync.ingestion.sources.github_issues import parse_repo_url
from source_sync.models import (
    Discovery,
    GroupJobData,
    ItemJobData,
    ItemResult,
    KnowledgeGroup,
    PageContent,
    UrlPage,
)
from source_sync.models.knowledge import KnowledgeGroupType


def discussion_markdown(discussion: dict) -> str:
    parts = [f"# {discussion.get('title') or 'Untitled'}", discussion.get("body") or ""]
    comments = ((discussion.get("comments") or {}).get("nodes")) or []
    if comments:
        lines = [
            f"{(comment.get('author') or {}).get('login', 'unknown')}: {comment.get('body') or ''}"
            for comment in comments
        ]
        parts.append("### Comments\n" + "\n\n".join(lines))
    return "\n\n".join(parts)


class GitHubDiscussionsSource(BaseSource):
    """
    Sync the discussions of a repository.

    Discussions are listed together with their content, so discovery
    returns them as inline pages and no fetch job is needed per item.
    """

    type = KnowledgeGroupType.GITHUB_DISCUSSIONS

    def _client(self, group: KnowledgeGroup) -> GitHubClient:
        return GitHubClient(token=group.github_token, transport=self.transport)

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        owner, repo = parse_repo_url(group.url)
        discussions, next_cursor = await self._client(group).list_discussions(
            owner, repo, cursor=job.cursor
        )

        pages = [
            UrlPage(
                url=discussion["url"],
                source_page_id=str(discussion["number"]),
                title=discussion.get("title") or "Untitled",
                text=discussion_markdown(discussion),
            )
            for discussion in discussions
            if not self.is_skipped(group, discussion["url"], discussion.get("title"))
        ]
        return Discovery(pages=pages, next_cursor=next_cursor)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        owner, repo = parse_repo_url(group.url)
        number = int(job.source_page_id or job.url.rstrip("/").rsplit("/", 1)[-1])

        discussion = await self._client(group).get_discussion(owner, repo, number)
        if not discussion:
            raise ContentError(f"Discussion {number} not found")

        return ItemResult(
            page=PageContent(
                title=discussion.get("title") or "Untitled",
                text=discussion_markdown(discussion),
            )
        )
