"""Shared route dependencies, overridable in tests via ``app.dependency_overrides``."""

from sitebot.queue import JobQueueStore
from sitebot.services.status import StatusBroadcaster, WebsiteStatusRegister, broadcaster

_store = JobQueueStore()
_register = WebsiteStatusRegister(sink=broadcaster)


def get_store() -> JobQueueStore:
    return _store


def get_register() -> WebsiteStatusRegister:
    return _register


def get_broadcaster() -> StatusBroadcaster:
    return broadcaster
