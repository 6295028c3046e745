"""Exception taxonomy for ingestion errors.

Distinguishes fatal configuration errors (raised at startup, never retried)
from per-job errors, which the queue processor turns into retries with backoff.
"""


class IngestionError(Exception):
    """Base class for ingestion errors."""

    pass


class ConfigurationError(IngestionError):
    """Missing or invalid process configuration, e.g. no crawl API key.

    Fatal: raised before any network call and never stored as a job failure.
    """

    pass


class CrawlProviderError(IngestionError):
    """A call to the crawl provider failed.

    ``kind`` is one of the ``CrawlProviderError.*`` constants below.
    """

    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    UPSTREAM_ERROR = "upstream_error"
    TRANSPORT_ERROR = "transport_error"

    def __init__(self, kind: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, body: str = "") -> "CrawlProviderError":
        """Map a non-2xx provider response to an error kind."""
        if status_code == 429:
            return cls(cls.RATE_LIMITED, "Firecrawl API rate limit exceeded", status_code)
        if status_code == 401:
            return cls(cls.UNAUTHORIZED, "Firecrawl API authentication failed", status_code)
        if status_code == 403:
            return cls(cls.FORBIDDEN, "Firecrawl API access forbidden", status_code)
        return cls(cls.UPSTREAM_ERROR, f"Firecrawl API error: {status_code} - {body[:200]}", status_code)


class NoContentExtracted(IngestionError):
    """No page survived normalization on any crawl path.

    Retryable: the site may block scraping only intermittently.
    """

    pass


class PromptGenerationError(IngestionError):
    """The prompt-generation service failed after a successful crawl."""

    pass


class WebsiteNotFound(IngestionError):
    """The website row referenced by a job no longer exists."""

    pass


class InvalidStatusTransition(IngestionError):
    """A website status write that the state machine does not allow."""

    pass


class IngestionInProgress(IngestionError):
    """The website already has a job being processed."""

    pass
