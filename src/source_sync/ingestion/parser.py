"""HTML page parser producing markdown and outgoing links."""

import re
from dataclasses import dataclass, field
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup
from markdownify import markdownify


@dataclass
class ParsedPage:
    """A rendered HTML page."""

    title: str
    markdown: str
    links: list[str] = field(default_factory=list)


class HtmlParser:
    """Convert HTML into markdown and collect the links it contains."""

    # Elements that never carry page content
    NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "iframe"]
    BLANK_LINES_PATTERN = re.compile(r"\n{3,}")

    def parse(self, html: str, base_url: str | None = None) -> ParsedPage:
        """
        Parse an HTML document.

        Args:
            html: Raw HTML
            base_url: URL the document was fetched from, used to resolve links

        Returns:
            ParsedPage with title, markdown and absolute links
        """
        soup = BeautifulSoup(html, "html.parser")

        title = self._extract_title(soup) or base_url or ""
        links = self._extract_links(soup, base_url) if base_url else []

        for tag in soup(self.NOISE_TAGS):
            tag.decompose()

        content = soup.find("article") or soup.find("main") or soup.body or soup
        return ParsedPage(title=title, markdown=self.to_markdown(str(content)), links=links)

    def to_markdown(self, html: str) -> str:
        """Render an HTML fragment as markdown."""
        markdown = markdownify(html, heading_style="ATX", strip=["img"])
        markdown = "\n".join(line.rstrip() for line in markdown.split("\n"))
        return self.BLANK_LINES_PATTERN.sub("\n\n", markdown).strip()

    def _extract_title(self, soup: BeautifulSoup) -> str | None:
        if soup.title and soup.title.get_text(strip=True):
            return soup.title.get_text(strip=True)
        h1 = soup.find("h1")
        if h1:
            return h1.get_text(strip=True)
        return None

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> list[str]:
        """Absolute, fragment-free, de-duplicated http(s) links in document order."""
        seen: set[str] = set()
        links = []
        for anchor in soup.select("a[href]"):
            href, _ = urldefrag(urljoin(base_url, anchor["href"]))
            if not href.startswith(("http://", "https://")) or href in seen:
                continue
            seen.add(href)
            links.append(href)
        return links


def html_to_markdown(html: str) -> str:
    return HtmlParser().to_markdown(html)
