"""Test configuration and shared fixtures."""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Override settings before importing app modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["FIRECRAWL_API_KEY"] = "test-firecrawl-key"
os.environ["FIRECRAWL_API_URL"] = "https://firecrawl.test/v0"
os.environ["PROMPT_SERVICE_URL"] = "http://dashboard.test/api/generate-prompt"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["QUEUE_PROCESSOR_ENABLED"] = "false"

from main import app  # noqa: E402
from sitebot.database import Base, get_db  # noqa: E402
from sitebot.enums import WebsiteStatus  # noqa: E402
from sitebot.models import Website  # noqa: E402
from sitebot.queue import JobQueueStore  # noqa: E402
from sitebot.routes.deps import get_broadcaster, get_register, get_store  # noqa: E402
from sitebot.services.crawler import CrawlOrchestrator  # noqa: E402
from sitebot.services.firecrawl import FirecrawlClient  # noqa: E402
from sitebot.services.polling import PollPolicy  # noqa: E402
from sitebot.services.prompt import PromptGenerator  # noqa: E402
from sitebot.services.status import StatusBroadcaster, WebsiteStatusRegister  # noqa: E402

LONG_TEXT = "This page has plenty of readable content for the chatbot to learn from. " * 2


class FakeClock:
    """Controllable replacement for ``utcnow`` in the job queue."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def replay(replies: list) -> httpx.Response:
    """Next scripted reply (the last one repeats). Exceptions are raised."""
    reply = replies.pop(0) if len(replies) > 1 else replies[0]
    if isinstance(reply, Exception):
        raise reply
    return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)


class FakeFirecrawl:
    """Scripted Firecrawl v0 API, served through ``httpx.MockTransport``.

    Each reply list holds ``httpx.Response`` objects or exceptions to raise.
    Replies are consumed in order; the last one repeats.
    """

    def __init__(self):
        self.crawl_replies: list = [httpx.Response(200, json={"jobId": "crawl-job-1"})]
        self.poll_replies: list = [httpx.Response(200, json={"status": "active"})]
        self.scrape_replies: list = [
            httpx.Response(200, json={"success": True, "data": self.page("https://example.com")})
        ]
        self.requests: list[httpx.Request] = []

    @staticmethod
    def page(url: str, content: str = LONG_TEXT, **metadata) -> dict:
        return {"markdown": content, "metadata": {"sourceURL": url, **metadata}}

    def calls(self, kind: str) -> int:
        return sum(1 for request in self.requests if self._kind(request) == kind)

    def _kind(self, request: httpx.Request) -> str:
        path = request.url.path
        if "/crawl/status/" in path:
            return "poll"
        if path.endswith("/crawl"):
            return "crawl"
        if path.endswith("/scrape"):
            return "scrape"
        return "other"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self._kind(request)
        if kind == "crawl":
            return replay(self.crawl_replies)
        if kind == "poll":
            return replay(self.poll_replies)
        if kind == "scrape":
            return replay(self.scrape_replies)
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sitebot.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory, clock) -> JobQueueStore:
    return JobQueueStore(session_factory, clock=clock, max_attempts=3)


@pytest.fixture
def events() -> StatusBroadcaster:
    return StatusBroadcaster()


@pytest.fixture
def register(session_factory, events) -> WebsiteStatusRegister:
    return WebsiteStatusRegister(session_factory, sink=events)


@pytest.fixture
def make_website(session_factory):
    """Factory for website rows."""

    async def _make(
        url: str = "https://example.com",
        status: str = WebsiteStatus.PENDING,
        **fields,
    ) -> Website:
        website = Website(
            id=uuid.uuid4(),
            url=url,
            title=fields.pop("title", "Example"),
            status=status,
            **fields,
        )
        async with session_factory() as db:
            db.add(website)
            await db.commit()
        return website

    return _make


@pytest.fixture
async def website(make_website) -> Website:
    return await make_website()


@pytest.fixture
def fake_firecrawl() -> FakeFirecrawl:
    return FakeFirecrawl()


@pytest.fixture
async def firecrawl_client(fake_firecrawl) -> AsyncGenerator[FirecrawlClient, None]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_firecrawl.handler))
    yield FirecrawlClient(
        api_key="test-firecrawl-key",
        base_url="https://firecrawl.test/v0",
        http_client=http_client,
    )
    await http_client.aclose()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def poll_policy(fake_sleep) -> PollPolicy:
    return PollPolicy(interval=10.0, max_attempts=30, sleep=fake_sleep)


@pytest.fixture
def orchestrator(firecrawl_client, poll_policy) -> CrawlOrchestrator:
    return CrawlOrchestrator(firecrawl_client, poll_policy)


@pytest.fixture
def prompt_replies() -> list:
    """Replies of the prompt-generation service, consumed like FakeFirecrawl's."""
    return [httpx.Response(200, json={"success": True, "chatbotId": "chatbot-123"})]


@pytest.fixture
async def prompt_generator(prompt_replies) -> AsyncGenerator[PromptGenerator, None]:
    def handler(request: httpx.Request) -> httpx.Response:
        return replay(prompt_replies)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    yield PromptGenerator(url="http://dashboard.test/api/generate-prompt", http_client=http_client)
    await http_client.aclose()


@pytest.fixture
async def client(session_factory, store, register, events) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with database, queue and status dependencies overridden."""

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_register] = lambda: register
    app.dependency_overrides[get_broadcaster] = lambda: events

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
