import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sitebot.config import settings
from sitebot.database import init_db
from sitebot.middleware import limiter
from sitebot.routes import health, queue, websites
from sitebot.routes.deps import get_register, get_store
from sitebot.services.firecrawl import close_client as close_firecrawl_client
from sitebot.worker import build_processor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()

    processor = None
    if settings.queue_processor_enabled:
        # Fails fast on a missing FIRECRAWL_API_KEY
        processor = build_processor(store=get_store(), register=get_register())
        processor.start()
    app.state.queue_processor = processor

    yield

    # Shutdown - let the in-flight job finish, then cleanup HTTP clients
    if processor is not None:
        await processor.stop(timeout=processor.orchestrator.poll_policy.ceiling_seconds + 60)
    await close_firecrawl_client()


app = FastAPI(
    title="Sitebot Ingestion API",
    description="Crawls registered websites and prepares their content for chatbots",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiter state (required by slowapi)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(websites.router, prefix="/api/websites", tags=["websites"])
app.include_router(queue.router, prefix="/api/queue", tags=["queue"])
app.include_router(health.router, prefix="/api/health", tags=["health"])
