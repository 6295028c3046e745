"""Entry points that put websites on the ingestion queue."""

import logging
import uuid

from sitebot.enums import JobPriority, JobStatus, WebsiteStatus
from sitebot.exceptions import IngestionInProgress, WebsiteNotFound
from sitebot.models import IngestionJob
from sitebot.queue import JobQueueStore
from sitebot.services.status import WebsiteStatusRegister

logger = logging.getLogger(__name__)


async def request_ingestion(
    store: JobQueueStore,
    register: WebsiteStatusRegister,
    website_id: uuid.UUID,
    url: str,
    priority: str | int | JobPriority = JobPriority.NORMAL,
) -> IngestionJob:
    """Queue a (re-)scrape of a website, starting from a clean slate.

    Websites that are not pending are reset first (status pending, scraped
    content cleared). A job still waiting in the queue is reused with its
    attempts reset to zero.

    Raises:
        WebsiteNotFound: If the website does not exist
        IngestionInProgress: If a job for this website is being processed
    """
    active = await store.active_job(website_id)
    if active is not None and active.status == JobStatus.PROCESSING:
        raise IngestionInProgress(f"Website {website_id} is being scraped (job {active.id})")

    snapshot = await register.get_status(website_id)
    if snapshot is None:
        raise WebsiteNotFound(f"Website {website_id} not found")
    if snapshot.status != WebsiteStatus.PENDING:
        await register.reset_for_rescrape(website_id)

    if active is not None:
        job = await store.reset(active.id)
        if job is not None:
            return job

    return await store.enqueue(website_id, url, priority)


async def retry_job(
    store: JobQueueStore,
    register: WebsiteStatusRegister,
    job_id: uuid.UUID,
) -> IngestionJob | None:
    """Manually retry a failed job. Returns None if the job does not exist.

    Raises:
        IngestionInProgress: If the job is being processed
    """
    job = await store.get(job_id)
    if job is None:
        return None
    if job.status == JobStatus.PROCESSING:
        raise IngestionInProgress(f"Job {job_id} is being processed")

    snapshot = await register.get_status(job.website_id)
    if snapshot is not None and snapshot.status != WebsiteStatus.PENDING:
        await register.reset_for_rescrape(job.website_id)

    return await store.reset(job_id)
