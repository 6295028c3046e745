"""Background queue processor for website ingestion jobs."""

import asyncio
import logging
import signal
from datetime import timedelta

from sitebot.config import settings
from sitebot.enums import JobStatus, WebsiteStatus
from sitebot.exceptions import ConfigurationError, IngestionError
from sitebot.models import IngestionJob
from sitebot.queue import JobQueueStore
from sitebot.services.crawler import CrawlOrchestrator
from sitebot.services.firecrawl import FirecrawlClient
from sitebot.services.normalizer import combine_pages
from sitebot.services.prompt import PromptGenerator
from sitebot.services.status import WebsiteStatusRegister
from sitebot.utils import truncate_error

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Claims and processes at most one ingestion job at a time.

    One job at a time keeps us under the crawl provider's rate limits; a slow
    crawl only delays the next tick. Runs one tick on start, then one every
    ``interval`` seconds until stopped.
    """

    def __init__(
        self,
        store: JobQueueStore,
        orchestrator: CrawlOrchestrator,
        register: WebsiteStatusRegister,
        prompt_generator: PromptGenerator,
        interval: float | None = None,
        stale_after: timedelta | None = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.register = register
        self.prompt_generator = prompt_generator
        self.interval = settings.queue_poll_interval_seconds if interval is None else interval
        self.stale_after = stale_after or timedelta(minutes=settings.stale_job_timeout_minutes)
        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the processing loop on the running event loop."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="ingestion-queue-processor")

    async def stop(self, timeout: float | None = None) -> None:
        """Stop after the current job. Cancels it if ``timeout`` expires first."""
        self._stopping.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout)
        except TimeoutError:
            logger.warning("Queue processor did not stop in time; in-flight job cancelled")
        except (asyncio.CancelledError, ConfigurationError):
            pass  # already logged by _run
        finally:
            self._task = None

    async def _run(self) -> None:
        logger.info(f"Queue processor started, polling every {self.interval}s")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except ConfigurationError:
                logger.critical("Queue processor stopped: invalid configuration", exc_info=True)
                raise
            except Exception as e:
                logger.exception(f"Queue processor tick failed: {e}")

            try:
                await asyncio.wait_for(self._stopping.wait(), self.interval)
            except TimeoutError:
                pass
        logger.info("Queue processor stopped")

    async def run_once(self) -> bool:
        """One tick: recover stale jobs, then claim and process one job.

        Returns True if a job was processed.
        """
        async with self._lock:
            await self.recover_stale_jobs()

            job = await self.store.claim_next()
            if job is None:
                return False

            logger.info(
                f"Processing job {job.id} for website {job.website_id} "
                f"(attempt {job.attempts + 1}/{job.max_attempts})"
            )
            try:
                await self.process_job(job)
                logger.info(f"Job {job.id} completed successfully")
            except ConfigurationError:
                raise
            except Exception as e:
                await self.handle_job_failure(job, e)
            return True

    async def process_job(self, job: IngestionJob) -> None:
        """
        Run the ingestion pipeline for one claimed job.

        Steps:
        1. Website -> scraping
        2. Crawl (multi-page with single-page fallback) and normalize
        3. Store the combined document, website -> processing
        4. Generate the chatbot prompt
        5. Website -> ready, then job -> completed

        A job whose website is already ready only finishes its own bookkeeping.
        """
        if await self._website_already_ready(job):
            logger.info(f"Website {job.website_id} is already ready, completing job {job.id}")
            await self.store.mark_completed(job.id)
            return

        await self.register.mark_scraping(job.website_id)

        result = await self.orchestrator.ingest(job.url)
        document = combine_pages(result.pages, result.method)
        await self.register.store_content(job.website_id, document)

        prompt = await self.prompt_generator.generate_prompt(job.website_id)

        # Website first: a crash before the job update leaves a processing job
        # that recover_stale_jobs picks up, never a completed job on an unfinished website.
        await self.register.mark_ready(job.website_id, prompt.chatbot_id)
        await self.store.mark_completed(job.id)

    async def _website_already_ready(self, job: IngestionJob) -> bool:
        # Set when an earlier run wrote ready but died before completing the job
        snapshot = await self.register.get_status(job.website_id)
        if snapshot is None or snapshot.status != WebsiteStatus.READY:
            return False
        return bool((snapshot.scraped_content or {}).get("totalPages"))

    async def handle_job_failure(self, job: IngestionJob, error: Exception) -> None:
        """Handle a failed job - retry with backoff until max_attempts exhausted."""
        logger.error(
            f"Job {job.id} failed (attempt {job.attempts + 1}/{job.max_attempts}): "
            f"{type(error).__name__}: {error}"
        )
        message = truncate_error(error)
        updated = await self.store.mark_failed_with_backoff(job.id, message)
        if updated is not None and updated.status == JobStatus.FAILED:
            await self._mark_website_error(updated, message)

    async def _mark_website_error(self, job: IngestionJob, message: str) -> None:
        try:
            await self.register.mark_error(job.website_id, message)
        except IngestionError as e:
            logger.warning(f"Could not mark website {job.website_id} as error: {e}")

    async def recover_stale_jobs(self) -> None:
        for job in await self.store.requeue_stale(self.stale_after):
            if job.status == JobStatus.FAILED:
                await self._mark_website_error(job, job.error_message or "Processing timed out")


def build_processor(**kwargs) -> QueueProcessor:
    """Wire a processor from settings.

    Raises:
        ConfigurationError: If the crawl provider API key is missing
    """
    store = kwargs.pop("store", None) or JobQueueStore()
    register = kwargs.pop("register", None) or WebsiteStatusRegister()
    orchestrator = kwargs.pop("orchestrator", None) or CrawlOrchestrator(FirecrawlClient())
    prompt_generator = kwargs.pop("prompt_generator", None) or PromptGenerator()
    return QueueProcessor(store, orchestrator, register, prompt_generator, **kwargs)


async def run_worker() -> None:
    """Run the processor until SIGINT/SIGTERM."""
    processor = build_processor()
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    processor.start()
    waiter = asyncio.create_task(stop_requested.wait())
    await asyncio.wait([waiter, processor._task], return_when=asyncio.FIRST_COMPLETED)
    waiter.cancel()
    logger.info("Shutdown requested, waiting for in-flight job")
    await processor.stop(timeout=processor.orchestrator.poll_policy.ceiling_seconds + 60)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_worker())
