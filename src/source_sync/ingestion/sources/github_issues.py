"""GitHub Issues source."""

import re

from source_sync.clients.github import GitHubClient
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

GITHUB_REPO_RE = re.compile(r"^https://(?:www\.)?github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")


def parse_repo_url(url: str | None) -> tuple[str, str]:
    """Owner and repository name of a GitHub repository URL."""
    match = GITHUB_REPO_RE.match(url or "")
    if not match:
        raise ConfigurationError(f"Invalid GitHub URL: {url}")
    return match.group(1), match.group(2)


def issue_markdown(issue: dict, timeline: list[dict]) -> str:
    """Issue body followed by the bodies of its comments."""
    entries = [issue.get("body") or ""]
    for event in timeline:
        if event.get("event") == "commented" and event.get("body"):
            entries.append(event["body"])
    return "\n\n".join(entries)


class GitHubIssuesSource(BaseSource):
    """Sync the issues of a repository, excluding pull requests."""

    type = KnowledgeGroupType.GITHUB_ISSUES

    def _client(self, group: KnowledgeGroup) -> GitHubClient:
        return GitHubClient(token=group.github_token, transport=self.transport)

    def allowed_states(self, group: KnowledgeGroup) -> set[str]:
        raw = group.allowed_github_issue_states or ""
        return {state.strip().lower() for state in raw.split(",") if state.strip()}

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        owner, repo = parse_repo_url(group.url)
        allowed = self.allowed_states(group)
        # A single state can be filtered by the API itself
        server_state = next(iter(allowed)) if len(allowed) == 1 else "all"

        issues, next_url = await self._client(group).list_issues(
            owner, repo, state=server_state, page_url=job.cursor
        )

        items = []
        for issue in issues:
            if "pull_request" in issue:
                continue
            if allowed and issue.get("state") not in allowed:
                continue
            if self.is_skipped(group, issue["html_url"], issue.get("title")):
                continue
            items.append(
                DiscoveredItem(
                    url=issue["html_url"],
                    source_page_id=str(issue["number"]),
                    title=issue.get("title"),
                )
            )

        return Discovery(items=items, next_cursor=next_url)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        owner, repo = parse_repo_url(group.url)
        number = int(job.source_page_id or job.url.rstrip("/").rsplit("/", 1)[-1])

        client = self._client(group)
        issue = await client.get_issue(owner, repo, number)
        timeline = await client.get_issue_timeline(owner, repo, number)

        return ItemResult(
            page=PageContent(
                title=issue.get("title") or "Untitled",
                text=issue_markdown(issue, timeline),
            )
        )
