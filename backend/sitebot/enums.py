"""Enums for status values used throughout the application."""

from enum import IntEnum, StrEnum


class WebsiteStatus(StrEnum):
    """Status of a website's ingestion, as shown on the dashboard.

    SCRAPING and PROCESSING are sub-phases of a single job's processing state.
    """

    PENDING = "pending"
    SCRAPING = "scraping"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class JobStatus(StrEnum):
    """Status of an ingestion job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPriority(IntEnum):
    """Claim order for ingestion jobs. Stored as an integer so it sorts."""

    LOW = 0
    NORMAL = 1
    HIGH = 2

    @classmethod
    def parse(cls, value: "str | int | JobPriority") -> "JobPriority":
        """Accept either the name ("high") or the stored ordinal (2)."""
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown priority: {value}") from None
        return cls(value)


class CrawlMethod(StrEnum):
    """How the pages of a combined document were obtained."""

    CRAWL = "firecrawl-crawl"
    SINGLE_PAGE_FALLBACK = "single-page-fallback"


# Website transitions the queue processor may perform. Manual re-scrape
# (any state -> PENDING) goes through the status register, not the processor.
WEBSITE_TRANSITIONS: dict[WebsiteStatus, frozenset[WebsiteStatus]] = {
    WebsiteStatus.PENDING: frozenset({WebsiteStatus.SCRAPING}),
    WebsiteStatus.SCRAPING: frozenset(
        {WebsiteStatus.SCRAPING, WebsiteStatus.PROCESSING, WebsiteStatus.ERROR}
    ),
    WebsiteStatus.PROCESSING: frozenset(
        {WebsiteStatus.SCRAPING, WebsiteStatus.READY, WebsiteStatus.ERROR}
    ),
    WebsiteStatus.READY: frozenset(),
    WebsiteStatus.ERROR: frozenset(),
}
