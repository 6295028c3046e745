from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "postgresql+asyncpg://localhost/sitebot"

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert Render's postgres:// URL to asyncpg format."""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+asyncpg://", 1)
        if v.startswith("postgresql://") and "+asyncpg" not in v:
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Firecrawl (crawl provider)
    firecrawl_api_key: str = ""
    firecrawl_api_url: str = "https://api.firecrawl.dev/v0"
    firecrawl_timeout_seconds: float = 30.0
    crawl_page_limit: int = 10
    crawl_max_depth: int = 2

    # Crawl status polling: 30 checks x 10s = 5 minute ceiling
    crawl_poll_interval_seconds: float = 10.0
    crawl_poll_max_attempts: int = 30

    # Ingestion queue
    queue_processor_enabled: bool = False  # Run the processor inside the API process
    queue_poll_interval_seconds: float = 30.0
    ingest_max_attempts: int = 3
    stale_job_timeout_minutes: int = 15  # Must exceed the crawl poll ceiling
    job_retention_days: int = 7

    # Prompt generation service (downstream collaborator)
    prompt_service_url: str = "http://localhost:3000/api/generate-prompt"
    prompt_service_timeout_seconds: float = 120.0

    # Dashboard (CORS)
    cors_origins: list[str] = ["http://localhost:3000"]

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    rate_limit_general_per_minute: int = 100
    rate_limit_rescrape_per_hour: int = 10
    rate_limit_status_per_minute: int = 500

    # Database pool
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800  # 30 minutes
    db_command_timeout: int = 30
    db_statement_timeout_ms: int = 30000  # 30 seconds

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
