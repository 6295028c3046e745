import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sitebot.database import get_db
from sitebot.enums import JobPriority
from sitebot.exceptions import IngestionInProgress, WebsiteNotFound
from sitebot.middleware.rate_limit import rate_limit_rescrape
from sitebot.models import Website
from sitebot.queue import JobQueueStore
from sitebot.routes.deps import get_register, get_store
from sitebot.routes.websites import JobResponse, job_response
from sitebot.services.ingestion import request_ingestion, retry_job
from sitebot.services.status import WebsiteStatusRegister
from sitebot.utils import validate_uuid

logger = logging.getLogger(__name__)

router = APIRouter()


class EnqueueRequest(BaseModel):
    website_id: str
    priority: str = JobPriority.NORMAL.name.lower()


class QueueStats(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    total: int


@router.get("/stats", response_model=QueueStats)
async def queue_stats(store: JobQueueStore = Depends(get_store)):
    """Job counts by status."""
    return QueueStats(**await store.stats())


@router.post("", response_model=JobResponse)
@rate_limit_rescrape()
async def enqueue_website(
    request: Request,
    body: EnqueueRequest,
    db: AsyncSession = Depends(get_db),
    store: JobQueueStore = Depends(get_store),
    register: WebsiteStatusRegister = Depends(get_register),
):
    """Manually queue a website for scraping."""
    website_uuid = validate_uuid(body.website_id, "website ID")
    try:
        priority = JobPriority.parse(body.priority)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid priority: {body.priority}") from None

    website = await db.get(Website, website_uuid)
    if website is None:
        raise HTTPException(status_code=404, detail="Website not found")

    try:
        job = await request_ingestion(store, register, website.id, website.url, priority)
    except IngestionInProgress as e:
        raise HTTPException(status_code=409, detail=str(e)) from None
    except WebsiteNotFound:
        raise HTTPException(status_code=404, detail="Website not found") from None

    return job_response(job)


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_failed_job(
    job_id: str,
    store: JobQueueStore = Depends(get_store),
    register: WebsiteStatusRegister = Depends(get_register),
):
    """Reset a job to pending with zero attempts."""
    try:
        job = await retry_job(store, register, validate_uuid(job_id, "job ID"))
    except IngestionInProgress as e:
        raise HTTPException(status_code=409, detail=str(e)) from None

    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_response(job)
