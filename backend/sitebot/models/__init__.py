"""Models package - re-exports all models for convenient imports."""

from sitebot.models.ingestion_job import IngestionJob
from sitebot.models.website import Website

__all__ = [
    "IngestionJob",
    "Website",
]
