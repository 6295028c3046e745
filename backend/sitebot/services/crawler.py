"""Crawl orchestration: multi-page crawl with single-page fallback."""

import logging
from dataclasses import dataclass

from sitebot.enums import CrawlMethod
from sitebot.exceptions import CrawlProviderError, NoContentExtracted
from sitebot.services.firecrawl import CrawlStatus, FirecrawlClient
from sitebot.services.normalizer import ScrapedPage, normalize_pages
from sitebot.services.polling import PollPolicy, PollTimeout

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    pages: list[ScrapedPage]
    method: str


class CrawlFailed(Exception):
    """The multi-page crawl path gave up; the caller falls back to a single-page scrape."""

    pass


class CrawlOrchestrator:
    """Drive one website crawl to completion.

    The provider's asynchronous multi-page crawl gives better content but fails
    more often (rate limits, timeouts, job failures), so any failure on that
    path degrades to a synchronous single-page scrape of the same URL.
    """

    def __init__(self, client: FirecrawlClient, poll_policy: PollPolicy | None = None):
        self.client = client
        self.poll_policy = poll_policy or PollPolicy.from_settings()

    async def ingest(self, url: str) -> IngestResult:
        """
        Crawl ``url`` and return its normalized pages.

        Steps:
        1. Start a multi-page crawl
        2. Use inline results, or poll the crawl job until it completes
        3. On any crawl failure, scrape the single page instead
        4. Normalize; an empty result is an error

        Raises:
            CrawlProviderError: If the single-page fallback also failed
            NoContentExtracted: If no page survived normalization
        """
        try:
            raw_pages = await self._crawl(url)
            method = CrawlMethod.CRAWL
        except (CrawlProviderError, CrawlFailed) as e:
            logger.warning(f"Multi-page crawl failed for {url}: {e}. Falling back to single page scrape")
            raw_pages = await self.client.scrape_single_page(url)
            method = CrawlMethod.SINGLE_PAGE_FALLBACK

        pages = normalize_pages(raw_pages)
        if not pages:
            raise NoContentExtracted(f"No content could be extracted from {url} ({method})")

        logger.info(f"Ingested {len(pages)} pages from {url} via {method}")
        return IngestResult(pages=pages, method=str(method))

    async def _crawl(self, url: str) -> list[dict]:
        started = await self.client.start_crawl(url)
        if started.job_id is None:
            return started.pages or []

        job_id = started.job_id
        checks = 0

        async def check() -> CrawlStatus:
            nonlocal checks
            checks += 1
            status = await self.client.poll_crawl(job_id)
            logger.info(f"Crawl status check {checks} for job {job_id}: {status.status}")
            return status

        try:
            status = await self.poll_policy.run(
                check, lambda s: s.status != FirecrawlClient.RUNNING
            )
        except PollTimeout as e:
            raise CrawlFailed(
                f"Crawl {job_id} timed out after {self.poll_policy.ceiling_seconds:.0f}s"
            ) from e

        if status.status == FirecrawlClient.FAILED:
            raise CrawlFailed(f"Firecrawl job failed: {status.error}")
        return status.pages
