"""Normalize raw crawl-provider pages into scraped pages and a combined document."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from bs4 import BeautifulSoup

from sitebot.utils import utcnow

logger = logging.getLogger(__name__)

# Pages with less content than this are navigation stubs, cookie walls, etc.
MIN_CONTENT_LENGTH = 50

UNTITLED_PAGE = "Untitled Page"


@dataclass
class ScrapedPage:
    """One page of a website, ready for aggregation."""

    url: str
    title: str
    content: str
    description: str | None = None
    keywords: list[str] | None = None


@dataclass
class CombinedDocument:
    """All scraped pages of a website, aggregated for prompt generation."""

    pages: list[ScrapedPage]
    total_pages: int
    main_content: str
    titles: list[str]
    descriptions: list[str]
    keywords: list[str]
    scraped_at: datetime
    method: str

    def to_dict(self) -> dict[str, Any]:
        """JSON payload stored in ``websites.scraped_content`` (camelCase for the dashboard)."""
        return {
            "pages": [asdict(page) for page in self.pages],
            "totalPages": self.total_pages,
            "mainContent": self.main_content,
            "titles": self.titles,
            "descriptions": self.descriptions,
            "keywords": self.keywords,
            "scrapedAt": self.scraped_at.isoformat(),
            "method": self.method,
        }


def _html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)


def _page_content(raw: dict[str, Any]) -> str:
    """Prefer markdown, then provider-extracted text, then text pulled from HTML."""
    for key in ("markdown", "content"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            return value
    html = raw.get("html")
    if isinstance(html, str) and html:
        return _html_to_text(html)
    return ""


def parse_keywords(value: Any) -> list[str] | None:
    """Keywords arrive either as "a, b, c" or as a list of strings."""
    if not value:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        return None
    keywords = [item.strip() for item in items if item.strip()]
    return keywords or None


def normalize_page(raw: dict[str, Any]) -> ScrapedPage | None:
    """Normalize one raw page; None if it falls under the content floor."""
    content = _page_content(raw)
    if len(content) < MIN_CONTENT_LENGTH:
        return None

    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    return ScrapedPage(
        url=metadata.get("sourceURL") or raw.get("url") or "",
        title=metadata.get("title") or UNTITLED_PAGE,
        content=content,
        description=metadata.get("description") or None,
        keywords=parse_keywords(metadata.get("keywords")),
    )


def normalize_pages(raw_pages: list[dict[str, Any]]) -> list[ScrapedPage]:
    """Normalize a provider page list, dropping low-content pages."""
    pages = []
    for raw in raw_pages:
        if not isinstance(raw, dict):
            continue
        page = normalize_page(raw)
        if page is not None:
            pages.append(page)

    logger.info(f"Normalized {len(pages)} of {len(raw_pages)} pages")
    return pages


def combine_pages(
    pages: list[ScrapedPage],
    method: str,
    scraped_at: datetime | None = None,
) -> CombinedDocument:
    """Aggregate pages into one document. Keywords are deduplicated, first-seen order kept."""
    keywords = list(dict.fromkeys(kw for page in pages for kw in page.keywords or []))

    return CombinedDocument(
        pages=pages,
        total_pages=len(pages),
        main_content="\n\n".join(page.content for page in pages),
        titles=[page.title for page in pages],
        descriptions=[page.description for page in pages if page.description],
        keywords=keywords,
        scraped_at=scraped_at or utcnow(),
        method=method,
    )
