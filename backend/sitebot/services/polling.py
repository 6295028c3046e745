"""Fixed-interval polling policy for asynchronous provider jobs."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from sitebot.config import settings

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class PollTimeout(Exception):
    """The polled job was still running after the last allowed check."""

    def __init__(self, attempts: int):
        super().__init__(f"Still running after {attempts} status checks")
        self.attempts = attempts


@dataclass(frozen=True)
class PollPolicy:
    """Sleep ``interval`` seconds, check, repeat, at most ``max_attempts`` checks.

    ``sleep`` is injectable so tests can run the policy against a fake clock.
    """

    interval: float = 10.0
    max_attempts: int = 30
    sleep: Sleep = asyncio.sleep

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        return cls(
            interval=settings.crawl_poll_interval_seconds,
            max_attempts=settings.crawl_poll_max_attempts,
        )

    @property
    def ceiling_seconds(self) -> float:
        return self.interval * self.max_attempts

    async def run(self, check: Callable[[], Awaitable[T]], is_done: Callable[[T], bool]) -> T:
        """Call ``check`` until ``is_done`` accepts its result.

        Exceptions raised by ``check`` propagate immediately, without further
        checks.

        Raises:
            PollTimeout: If every allowed check came back not done
        """
        # The provider never finishes instantly, so wait before the first check too.
        await self.sleep(self.interval)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.interval),
            retry=retry_if_result(lambda result: not is_done(result)),
            sleep=self.sleep,
        )
        try:
            return await retrying(check)
        except RetryError:
            raise PollTimeout(self.max_attempts) from None
