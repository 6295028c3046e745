"""Health check endpoints for the database, the crawl provider and the queue processor."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from sitebot.config import settings
from sitebot.database import get_db
from sitebot.exceptions import ConfigurationError, CrawlProviderError
from sitebot.services.firecrawl import FirecrawlClient

router = APIRouter()


@router.get("")
async def health():
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/db")
async def db_health(db: AsyncSession = Depends(get_db)):
    """Check database connectivity."""
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"status": "healthy"}
    except Exception as e:
        raise HTTPException(503, f"Database health check failed: {e}") from e


@router.get("/crawler")
async def crawler_health():
    """Check that the crawl provider accepts our API key (scrapes example.com)."""
    try:
        await FirecrawlClient().check_connection()
    except ConfigurationError as e:
        raise HTTPException(503, str(e)) from e
    except CrawlProviderError as e:
        raise HTTPException(503, f"Firecrawl check failed ({e.kind}): {e}") from e
    return {"status": "healthy", "provider": settings.firecrawl_api_url}


@router.get("/worker")
async def worker_health(request: Request):
    """Report whether this process runs the queue processor."""
    processor = getattr(request.app.state, "queue_processor", None)
    if processor is None:
        return {"status": "disabled", "embedded": False}
    if not processor.running:
        raise HTTPException(503, "Queue processor is not running")
    return {"status": "healthy", "embedded": True, "interval_seconds": processor.interval}
