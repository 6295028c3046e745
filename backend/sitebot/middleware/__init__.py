"""Middleware components for request protection."""

from sitebot.middleware.rate_limit import get_client_key, limiter

__all__ = [
    "get_client_key",
    "limiter",
]
