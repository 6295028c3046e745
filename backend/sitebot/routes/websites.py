import json
import logging
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, HttpUrl
from sqlalchemy.ext.asyncio import AsyncSession

from sitebot.database import get_db
from sitebot.enums import JobPriority, WebsiteStatus
from sitebot.exceptions import IngestionInProgress, WebsiteNotFound
from sitebot.middleware.rate_limit import rate_limit_rescrape, rate_limit_status
from sitebot.models import Website
from sitebot.queue import JobQueueStore
from sitebot.routes.deps import get_broadcaster, get_register, get_store
from sitebot.services.ingestion import request_ingestion
from sitebot.services.status import StatusBroadcaster, WebsiteStatusRegister
from sitebot.utils import validate_uuid

logger = logging.getLogger(__name__)

router = APIRouter()

# Seconds between status re-reads on the event stream. The processor may run
# in another process, where in-process events never reach this one.
EVENT_STREAM_REFRESH_SECONDS = 5.0

TERMINAL_WEBSITE_STATUSES = {WebsiteStatus.READY, WebsiteStatus.ERROR}


class WebsiteCreate(BaseModel):
    url: HttpUrl
    title: str
    description: str | None = None
    priority: str = JobPriority.NORMAL.name.lower()


class WebsiteResponse(BaseModel):
    id: str
    url: str
    title: str | None
    description: str | None
    status: str
    job_id: str | None = None


class RescrapeRequest(BaseModel):
    priority: str = JobPriority.NORMAL.name.lower()


class JobResponse(BaseModel):
    job_id: str
    website_id: str
    status: str
    priority: str
    attempts: int
    max_attempts: int


class WebsiteStatusResponse(BaseModel):
    status: str
    scraped_content: dict[str, Any] | None = None
    error_message: str | None = None
    updated_at: str | None = None


def _parse_priority(value: str) -> JobPriority:
    try:
        return JobPriority.parse(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid priority: {value}") from None


@router.post("", response_model=WebsiteResponse)
async def create_website(
    body: WebsiteCreate,
    db: AsyncSession = Depends(get_db),
    store: JobQueueStore = Depends(get_store),
):
    """Register a website and queue it for ingestion."""
    priority = _parse_priority(body.priority)
    website = Website(
        url=str(body.url).strip(),
        title=body.title.strip(),
        description=body.description.strip() if body.description else None,
        status=WebsiteStatus.PENDING,
    )
    db.add(website)

    # Commit FIRST - the job references the website row
    await db.commit()

    job_id = None
    try:
        job = await store.enqueue(website.id, website.url, priority)
        job_id = str(job.id)
    except Exception as e:
        # The website exists either way; the user can trigger a re-scrape
        logger.error(f"Failed to queue ingestion for website {website.id}: {e}")

    return WebsiteResponse(
        id=str(website.id),
        url=website.url,
        title=website.title,
        description=website.description,
        status=website.status,
        job_id=job_id,
    )


@router.get("/{website_id}/status", response_model=WebsiteStatusResponse)
@rate_limit_status()
async def get_website_status(
    request: Request,
    website_id: str,
    register: WebsiteStatusRegister = Depends(get_register),
):
    """Get website ingestion status (for polling)."""
    snapshot = await register.get_status(validate_uuid(website_id, "website ID"))
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Website not found")

    return WebsiteStatusResponse(
        status=snapshot.status,
        scraped_content=snapshot.scraped_content,
        error_message=snapshot.error_message,
        updated_at=snapshot.updated_at.isoformat() if snapshot.updated_at else None,
    )


@router.post("/{website_id}/rescrape", response_model=JobResponse)
@rate_limit_rescrape()
async def rescrape_website(
    request: Request,
    website_id: str,
    body: RescrapeRequest | None = None,
    db: AsyncSession = Depends(get_db),
    store: JobQueueStore = Depends(get_store),
    register: WebsiteStatusRegister = Depends(get_register),
):
    """Clear scraped content and queue a fresh ingestion job."""
    website_uuid = validate_uuid(website_id, "website ID")
    priority = _parse_priority(body.priority if body else "normal")

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


@router.get("/{website_id}/events")
async def website_events(
    website_id: str,
    register: WebsiteStatusRegister = Depends(get_register),
    events: StatusBroadcaster = Depends(get_broadcaster),
):
    """Server-sent events stream of status changes for one website.

    Emits the current status first, then one event per status write. The stream
    ends once the website is ready or errored.
    """
    website_uuid = validate_uuid(website_id, "website ID")
    snapshot = await register.get_status(website_uuid)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Website not found")

    async def stream():
        last_status = snapshot.status
        yield f"data: {json.dumps({'websiteId': website_id, 'status': last_status})}\n\n"
        if last_status in TERMINAL_WEBSITE_STATUSES:
            return

        async with aclosing(events.subscribe(website_uuid, EVENT_STREAM_REFRESH_SECONDS)) as feed:
            async for event in feed:
                if event is None:
                    # Quiet period: re-read, and only report an actual change
                    current = await register.get_status(website_uuid)
                    if current is None:
                        return
                    changed = current.status != last_status
                    status = current.status
                else:
                    changed = True
                    status = event.status

                if changed:
                    last_status = status
                    yield f"data: {json.dumps({'websiteId': website_id, 'status': status})}\n\n"
                if status in TERMINAL_WEBSITE_STATUSES:
                    return

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def job_response(job) -> JobResponse:
    return JobResponse(
        job_id=str(job.id),
        website_id=str(job.website_id),
        status=job.status,
        priority=JobPriority(job.priority).name.lower(),
        attempts=job.attempts,
        max_attempts=job.max_attempts,
    )
