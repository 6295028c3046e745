"""Tests for the utils module."""

import uuid
from datetime import UTC, datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from sitebot.utils import as_utc, truncate_error, utcnow, validate_uuid


class TestValidateUuid:
    """Tests for UUID validation utility."""

    def test_valid_uuid(self):
        valid = "550e8400-e29b-41d4-a716-446655440000"
        result = validate_uuid(valid)
        assert isinstance(result, uuid.UUID)
        assert str(result) == valid

    def test_invalid_uuid_raises_400(self):
        with pytest.raises(HTTPException) as exc_info:
            validate_uuid("not-a-uuid")
        assert exc_info.value.status_code == 400
        assert "Invalid ID" in exc_info.value.detail

    def test_invalid_uuid_custom_name(self):
        """Should use custom name in error message."""
        with pytest.raises(HTTPException) as exc_info:
            validate_uuid("invalid", "website ID")
        assert exc_info.value.detail == "Invalid website ID"

    def test_partial_uuid_raises(self):
        with pytest.raises(HTTPException):
            validate_uuid("550e8400-e29b-41d4")


class TestTimestamps:
    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo is UTC

    def test_as_utc_attaches_utc_to_naive(self):
        naive = datetime(2024, 6, 1, 12, 0)
        assert as_utc(naive) == datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def test_as_utc_keeps_aware_values(self):
        aware = datetime(2024, 6, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc(aware) is aware

    def test_as_utc_none(self):
        assert as_utc(None) is None


class TestTruncateError:
    def test_short_errors_unchanged(self):
        assert truncate_error(ValueError("bad page")) == "bad page"

    def test_long_errors_are_cut(self):
        assert truncate_error("x" * 1500) == "x" * 1000
