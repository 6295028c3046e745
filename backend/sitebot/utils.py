"""Shared utilities used across the application."""

import uuid
from datetime import UTC, datetime

from fastapi import HTTPException


def validate_uuid(value: str, name: str = "ID") -> uuid.UUID:
    """Validate and convert a string to UUID.

    Args:
        value: String to validate as UUID
        name: Human-readable name for error messages

    Returns:
        Validated UUID

    Raises:
        HTTPException: 400 if the string is not a valid UUID
    """
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from None


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops the offset on storage)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def truncate_error(error: BaseException | str, limit: int = 1000) -> str:
    """Error text as stored on job and website rows."""
    return str(error)[:limit]
