"""Tests for the Firecrawl API client."""

import json

import httpx
import pytest

from sitebot.exceptions import ConfigurationError, CrawlProviderError
from sitebot.services.firecrawl import EXCLUDED_PATHS, FirecrawlClient


class TestClientConfiguration:
    def test_missing_api_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="FIRECRAWL_API_KEY"):
            FirecrawlClient(api_key="")

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, firecrawl_client, fake_firecrawl):
        await firecrawl_client.start_crawl("https://example.com")
        assert fake_firecrawl.requests[0].headers["authorization"] == "Bearer test-firecrawl-key"


class TestCrawlRequest:
    """Tests for the crawl request body."""

    def test_restricts_crawl_to_origin(self, firecrawl_client):
        body = firecrawl_client.crawl_request("https://example.com/shop/index.html")
        assert body["url"] == "https://example.com/shop/index.html"
        assert body["crawlerOptions"]["includes"] == ["https://example.com/*"]

    def test_crawl_limits_and_exclusions(self, firecrawl_client):
        options = firecrawl_client.crawl_request("https://example.com")["crawlerOptions"]
        assert options["limit"] == 10
        assert options["maxDepth"] == 2
        assert options["mode"] == "fast"
        assert options["excludes"] == EXCLUDED_PATHS
        assert "**/blog/**" in options["excludes"]

    def test_requests_main_content_only(self, firecrawl_client):
        page_options = firecrawl_client.crawl_request("https://example.com")["pageOptions"]
        assert page_options == {
            "onlyMainContent": True,
            "includeHtml": False,
            "includeRawHtml": False,
        }


class TestStartCrawl:
    @pytest.mark.asyncio
    async def test_returns_job_id(self, firecrawl_client, fake_firecrawl):
        started = await firecrawl_client.start_crawl("https://example.com")

        assert started.job_id == "crawl-job-1"
        assert started.pages is None
        sent = json.loads(fake_firecrawl.requests[0].content)
        assert sent["url"] == "https://example.com"

    @pytest.mark.asyncio
    async def test_returns_inline_pages(self, firecrawl_client, fake_firecrawl):
        pages = [fake_firecrawl.page("https://example.com/")]
        fake_firecrawl.crawl_replies = [httpx.Response(200, json={"success": True, "data": pages})]

        started = await firecrawl_client.start_crawl("https://example.com")

        assert started.job_id is None
        assert started.pages == pages

    @pytest.mark.asyncio
    async def test_unexpected_body_is_upstream_error(self, firecrawl_client, fake_firecrawl):
        fake_firecrawl.crawl_replies = [
            httpx.Response(200, json={"success": False, "error": "bad url"})
        ]

        with pytest.raises(CrawlProviderError, match="bad url") as exc_info:
            await firecrawl_client.start_crawl("https://example.com")
        assert exc_info.value.kind == CrawlProviderError.UPSTREAM_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,kind",
        [
            (429, CrawlProviderError.RATE_LIMITED),
            (401, CrawlProviderError.UNAUTHORIZED),
            (403, CrawlProviderError.FORBIDDEN),
            (500, CrawlProviderError.UPSTREAM_ERROR),
            (502, CrawlProviderError.UPSTREAM_ERROR),
        ],
    )
    async def test_http_errors_map_to_kinds(
        self, firecrawl_client, fake_firecrawl, status_code, kind
    ):
        fake_firecrawl.crawl_replies = [httpx.Response(status_code, text="nope")]

        with pytest.raises(CrawlProviderError) as exc_info:
            await firecrawl_client.start_crawl("https://example.com")
        assert exc_info.value.kind == kind
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_transport_failure(self, firecrawl_client, fake_firecrawl):
        fake_firecrawl.crawl_replies = [httpx.ConnectError("connection refused")]

        with pytest.raises(CrawlProviderError) as exc_info:
            await firecrawl_client.start_crawl("https://example.com")
        assert exc_info.value.kind == CrawlProviderError.TRANSPORT_ERROR

    @pytest.mark.asyncio
    async def test_invalid_json_is_upstream_error(self, firecrawl_client, fake_firecrawl):
        fake_firecrawl.crawl_replies = [httpx.Response(200, text="<html>gateway</html>")]

        with pytest.raises(CrawlProviderError) as exc_info:
            await firecrawl_client.start_crawl("https://example.com")
        assert exc_info.value.kind == CrawlProviderError.UPSTREAM_ERROR


class TestPollCrawl:
    """Tests for crawl status mapping."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_status", ["active", "waiting", "paused", None])
    async def test_in_flight_statuses_are_running(
        self, firecrawl_client, fake_firecrawl, provider_status
    ):
        fake_firecrawl.poll_replies = [httpx.Response(200, json={"status": provider_status})]

        status = await firecrawl_client.poll_crawl("crawl-job-1")

        assert status.status == FirecrawlClient.RUNNING
        assert fake_firecrawl.requests[0].url.path == "/v0/crawl/status/crawl-job-1"

    @pytest.mark.asyncio
    async def test_completed_returns_pages(self, firecrawl_client, fake_firecrawl):
        pages = [
            fake_firecrawl.page("https://example.com/a"),
            fake_firecrawl.page("https://example.com/b"),
        ]
        fake_firecrawl.poll_replies = [
            httpx.Response(200, json={"status": "completed", "data": pages})
        ]

        status = await firecrawl_client.poll_crawl("crawl-job-1")

        assert status.status == FirecrawlClient.COMPLETED
        assert status.pages == pages

    @pytest.mark.asyncio
    async def test_failed_carries_error(self, firecrawl_client, fake_firecrawl):
        fake_firecrawl.poll_replies = [
            httpx.Response(200, json={"status": "failed", "error": "blocked by robots.txt"})
        ]

        status = await firecrawl_client.poll_crawl("crawl-job-1")

        assert status.status == FirecrawlClient.FAILED
        assert status.error == "blocked by robots.txt"


class TestScrapeSinglePage:
    @pytest.mark.asyncio
    async def test_returns_single_page_list(self, firecrawl_client, fake_firecrawl):
        pages = await firecrawl_client.scrape_single_page("https://example.com")

        assert len(pages) == 1
        assert pages[0]["metadata"]["sourceURL"] == "https://example.com"
        sent = json.loads(fake_firecrawl.requests[0].content)
        assert sent == {
            "url": "https://example.com",
            "pageOptions": {"onlyMainContent": True, "includeHtml": False, "includeRawHtml": False},
        }

    @pytest.mark.asyncio
    async def test_unsuccessful_scrape_raises(self, firecrawl_client, fake_firecrawl):
        fake_firecrawl.scrape_replies = [
            httpx.Response(200, json={"success": False, "error": "timeout"})
        ]

        with pytest.raises(CrawlProviderError, match="Failed to scrape page: timeout"):
            await firecrawl_client.scrape_single_page("https://example.com")

    @pytest.mark.asyncio
    async def test_check_connection_scrapes_known_page(self, firecrawl_client, fake_firecrawl):
        await firecrawl_client.check_connection()

        assert fake_firecrawl.calls("scrape") == 1
        assert json.loads(fake_firecrawl.requests[0].content)["url"] == "https://example.com"
