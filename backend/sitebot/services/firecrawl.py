"""Firecrawl API client for multi-page crawls and single-page scrapes."""

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from sitebot.config import settings
from sitebot.exceptions import ConfigurationError, CrawlProviderError

logger = logging.getLogger(__name__)


# Module-level HTTP client for connection reuse
_http_client: httpx.AsyncClient | None = None


def _get_http_client() -> httpx.AsyncClient:
    """Get shared HTTP client for connection reuse."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=settings.firecrawl_timeout_seconds)
    return _http_client


async def close_client() -> None:
    """Close the shared HTTP client (called on shutdown)."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


EXCLUDED_PATHS = [
    "**/blog/**",
    "**/news/**",
    "**/press/**",
    "**/*.pdf",
    "**/*.jpg",
    "**/*.png",
    "**/*.gif",
]

PAGE_OPTIONS = {
    "onlyMainContent": True,
    "includeHtml": False,
    "includeRawHtml": False,
}


@dataclass
class CrawlStart:
    """Result of starting a crawl: either a job to poll or inline pages."""

    job_id: str | None = None
    pages: list[dict[str, Any]] | None = None


@dataclass
class CrawlStatus:
    status: str  # running | completed | failed
    pages: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


class FirecrawlClient:
    """Client for the Firecrawl v0 crawl and scrape endpoints."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        api_key = settings.firecrawl_api_key if api_key is None else api_key
        if not api_key:
            raise ConfigurationError(
                "Firecrawl API key not configured. Set FIRECRAWL_API_KEY in the environment."
            )
        self.base_url = (base_url or settings.firecrawl_api_url).rstrip("/")
        self.headers = {"Authorization": f"Bearer {api_key}"}
        self._http_client = http_client

    async def _request(self, method: str, path: str, body: dict | None = None) -> dict[str, Any]:
        client = self._http_client or _get_http_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                json=body,
            )
        except httpx.TransportError as e:
            raise CrawlProviderError(
                CrawlProviderError.TRANSPORT_ERROR,
                f"Firecrawl request {method} {path} failed: {e!r}",
            ) from e

        if response.is_error:
            raise CrawlProviderError.from_status(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise CrawlProviderError(
                CrawlProviderError.UPSTREAM_ERROR,
                f"Firecrawl returned invalid JSON for {path}",
                response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise CrawlProviderError(
                CrawlProviderError.UPSTREAM_ERROR,
                f"Firecrawl returned an unexpected body for {path}",
                response.status_code,
            )
        return data

    def crawl_request(self, url: str) -> dict[str, Any]:
        """Request body for a same-origin crawl of ``url``."""
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}"
        return {
            "url": url,
            "crawlerOptions": {
                "includes": [f"{origin}/*"],
                "excludes": EXCLUDED_PATHS,
                "generateImgAltText": False,
                "returnOnlyUrls": False,
                "maxDepth": settings.crawl_max_depth,
                "mode": "fast",
                "limit": settings.crawl_page_limit,
            },
            "pageOptions": PAGE_OPTIONS,
        }

    async def start_crawl(self, url: str) -> CrawlStart:
        """Start a multi-page crawl. Returns a job id, or pages if the provider answered inline."""
        data = await self._request("POST", "/crawl", self.crawl_request(url))

        job_id = data.get("jobId")
        if job_id:
            logger.info(f"Firecrawl crawl started for {url}, jobId={job_id}")
            return CrawlStart(job_id=str(job_id))

        if data.get("success") and isinstance(data.get("data"), list):
            logger.info(f"Firecrawl crawl for {url} returned {len(data['data'])} pages inline")
            return CrawlStart(pages=data["data"])

        raise CrawlProviderError(
            CrawlProviderError.UPSTREAM_ERROR,
            f"Unexpected response from Firecrawl crawl: {data.get('error') or 'no jobId or data'}",
        )

    async def poll_crawl(self, job_id: str) -> CrawlStatus:
        """Check the status of a crawl job."""
        data = await self._request("GET", f"/crawl/status/{job_id}")

        status = data.get("status")
        if status == self.COMPLETED:
            return CrawlStatus(status=self.COMPLETED, pages=data.get("data") or [])
        if status == self.FAILED:
            return CrawlStatus(status=self.FAILED, error=data.get("error") or "Unknown error")
        # "active", "waiting", "paused" and friends are all still in flight
        return CrawlStatus(status=self.RUNNING)

    async def scrape_single_page(self, url: str) -> list[dict[str, Any]]:
        """Scrape just ``url``. Returns a single raw page record."""
        data = await self._request("POST", "/scrape", {"url": url, "pageOptions": PAGE_OPTIONS})

        if not data.get("success") or not data.get("data"):
            raise CrawlProviderError(
                CrawlProviderError.UPSTREAM_ERROR,
                f"Failed to scrape page: {data.get('error') or 'Unknown error'}",
            )
        return [data["data"]]

    async def check_connection(self) -> None:
        """Scrape a known-good page to verify the API key and connectivity.

        Raises:
            CrawlProviderError: If the provider cannot be reached or rejects the key
        """
        await self.scrape_single_page("https://example.com")
