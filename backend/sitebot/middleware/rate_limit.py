"""Rate limiting middleware using SlowAPI."""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from sitebot.config import settings

logger = logging.getLogger(__name__)


def get_client_key(request: Request) -> str:
    """Extract caller identifier for rate limiting.

    Uses the user id forwarded by the dashboard when present, otherwise the
    client IP address.
    """
    user_id = request.headers.get("x-user-id")
    if user_id:
        return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_key,
    storage_uri=settings.rate_limit_storage_uri,
    default_limits=[f"{settings.rate_limit_general_per_minute}/minute"],
    headers_enabled=False,  # Routes return models, not Response objects
    enabled=settings.rate_limit_enabled,
)


def rate_limit_rescrape():
    """Decorator for endpoints that trigger a crawl (expensive upstream)."""
    return limiter.limit(f"{settings.rate_limit_rescrape_per_hour}/hour")


def rate_limit_status():
    """Decorator for status polling endpoints (higher limit)."""
    return limiter.limit(f"{settings.rate_limit_status_per_minute}/minute")
