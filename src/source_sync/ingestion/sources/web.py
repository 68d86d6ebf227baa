"""Website source: crawls pages under the group's URL."""

from urllib.parse import urldefrag, urlparse

from source_sync.clients.base import ApiClient
from source_sync.errors import ConfigurationError, ContentError
from source_sync.ingestion.parser import HtmlParser
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

TEXT_TYPES = ("text/plain", "text/markdown", "text/x-markdown")


class WebSource(BaseSource):
    """
    Crawl a website.

    Discovery schedules the configured start URLs. Each fetched page
    returns the links it contains that stay under the group's URL, so
    the crawl spreads one page at a time through the item queue.
    """

    type = KnowledgeGroupType.WEB

    def __init__(self, transport=None, **options):
        super().__init__(transport=transport, **options)
        self.parser = HtmlParser()

    async def update_group(self, job: GroupJobData, group: KnowledgeGroup) -> Discovery:
        start_urls = [url for url in [group.url, *group.urls] if url]
        if not start_urls:
            raise ConfigurationError("Web group has no URL")

        items = []
        seen = set()
        for url in start_urls:
            url, _ = urldefrag(url)
            if url in seen or self.is_skipped(group, url):
                continue
            seen.add(url)
            items.append(DiscoveredItem(url=url))
        return Discovery(items=items)

    async def update_item(self, job: ItemJobData, group: KnowledgeGroup) -> ItemResult:
        response = await ApiClient(transport=self.transport).request("GET", job.url)
        content_type = response.headers.get("content-type", "")

        if content_type.startswith(TEXT_TYPES):
            title = urlparse(job.url).path.rsplit("/", 1)[-1] or job.url
            return ItemResult(page=PageContent(title=title, text=response.text))
        if "html" not in content_type:
            raise ContentError(f"Unsupported content type {content_type!r} at {job.url}")

        parsed = self.parser.parse(response.text, base_url=str(response.url))
        if job.just_this:
            discovered = []
        else:
            scope = self._scope(group, job.url)
            discovered = [
                DiscoveredItem(url=link)
                for link in parsed.links
                if link.startswith(scope) and not self.is_skipped(group, link)
            ]

        return ItemResult(
            page=PageContent(title=parsed.title, text=parsed.markdown),
            discovered=discovered,
        )

    def _scope(self, group: KnowledgeGroup, url: str) -> str:
        """URL prefix a crawled link must share to be followed."""
        if group.url:
            return urldefrag(group.url)[0]
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"
