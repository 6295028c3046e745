"""Website status register: the observable side of ingestion progress.

Every status write goes through ``WebsiteStatusRegister`` so it can be checked
against the website state machine and published to a ``StatusEventSink``
(the SSE route subscribes through ``StatusBroadcaster``).
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitebot.database import async_session
from sitebot.enums import WEBSITE_TRANSITIONS, WebsiteStatus
from sitebot.exceptions import InvalidStatusTransition, WebsiteNotFound
from sitebot.models import Website
from sitebot.services.normalizer import CombinedDocument
from sitebot.utils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    website_id: uuid.UUID
    status: str


@dataclass
class StatusSnapshot:
    website_id: uuid.UUID
    status: str
    scraped_content: dict[str, Any] | None
    error_message: str | None
    updated_at: datetime | None


class StatusEventSink(Protocol):
    async def publish(self, event: StatusEvent) -> None: ...


class StatusBroadcaster:
    """In-process fan-out of status events to per-website subscribers."""

    def __init__(self, max_queued: int = 100):
        self.max_queued = max_queued
        self._subscribers: dict[uuid.UUID, set[asyncio.Queue]] = defaultdict(set)

    async def publish(self, event: StatusEvent) -> None:
        for queue in list(self._subscribers.get(event.website_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping status event for slow subscriber of {event.website_id}")

    async def subscribe(
        self, website_id: uuid.UUID, timeout: float | None = None
    ) -> AsyncIterator[StatusEvent | None]:
        """Yield events for one website. Yields None after ``timeout`` seconds of silence."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queued)
        self._subscribers[website_id].add(queue)
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout)
                except TimeoutError:
                    yield None
        finally:
            self._subscribers[website_id].discard(queue)
            if not self._subscribers[website_id]:
                del self._subscribers[website_id]


# Shared by the API routes and an embedded queue processor
broadcaster = StatusBroadcaster()


class WebsiteStatusRegister:
    """Reads and writes ``websites.status`` / ``websites.scraped_content``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        sink: StatusEventSink | None = None,
    ):
        self.session_factory = session_factory or async_session
        self.sink = sink if sink is not None else broadcaster

    async def get_status(self, website_id: uuid.UUID) -> StatusSnapshot | None:
        async with self.session_factory() as db:
            website = await db.get(Website, website_id)
            if website is None:
                return None
            return StatusSnapshot(
                website_id=website.id,
                status=website.status,
                scraped_content=website.scraped_content,
                error_message=website.error_message,
                updated_at=as_utc(website.updated_at),
            )

    async def _write(
        self,
        website_id: uuid.UUID,
        status: WebsiteStatus,
        check_transition: bool = True,
        **fields: Any,
    ) -> None:
        async with self.session_factory() as db:
            website = await db.get(Website, website_id)
            if website is None:
                raise WebsiteNotFound(f"Website {website_id} not found")

            current = WebsiteStatus(website.status)
            if check_transition and status not in WEBSITE_TRANSITIONS[current]:
                raise InvalidStatusTransition(
                    f"Website {website_id} cannot go from {current} to {status}"
                )

            website.status = status
            for name, value in fields.items():
                setattr(website, name, value)
            website.updated_at = utcnow()
            await db.commit()

        await self._publish(StatusEvent(website_id=website_id, status=str(status)))

    async def _publish(self, event: StatusEvent) -> None:
        try:
            await self.sink.publish(event)
        except Exception:
            # The row is already committed; observers fall back to point reads.
            logger.exception(f"Failed to publish status event for website {event.website_id}")

    async def mark_scraping(self, website_id: uuid.UUID) -> None:
        await self._write(website_id, WebsiteStatus.SCRAPING)

    async def store_content(self, website_id: uuid.UUID, document: CombinedDocument) -> None:
        """Attach the combined document and move to PROCESSING (prompt generation)."""
        first = document.pages[0] if document.pages else None
        fields: dict[str, Any] = {"scraped_content": document.to_dict(), "error_message": None}
        if first is not None:
            fields["title"] = first.title
            fields["description"] = first.description
        await self._write(website_id, WebsiteStatus.PROCESSING, **fields)

    async def mark_ready(self, website_id: uuid.UUID, chatbot_id: str | None = None) -> None:
        """Move to READY. Refused unless stored content has at least one page."""
        async with self.session_factory() as db:
            website = await db.get(Website, website_id)
            if website is None:
                raise WebsiteNotFound(f"Website {website_id} not found")
            total_pages = (website.scraped_content or {}).get("totalPages", 0)
        if not total_pages:
            raise InvalidStatusTransition(f"Website {website_id} has no scraped pages")

        fields: dict[str, Any] = {}
        if chatbot_id:
            fields["chatbot_id"] = chatbot_id
        await self._write(website_id, WebsiteStatus.READY, **fields)

    async def mark_error(self, website_id: uuid.UUID, error_message: str) -> None:
        await self._write(website_id, WebsiteStatus.ERROR, error_message=error_message)

    async def reset_for_rescrape(self, website_id: uuid.UUID) -> None:
        """Manual re-scrape: back to PENDING from any state, previous content cleared."""
        await self._write(
            website_id,
            WebsiteStatus.PENDING,
            check_transition=False,
            scraped_content=None,
            error_message=None,
            chatbot_id=None,
        )
