"""Unit tests for rate limit configuration."""

import json
from unittest.mock import MagicMock

import pytest
from slowapi.errors import RateLimitExceeded

from core.ratelimit import (
    BULK_EXPORT_LIMIT,
    EXPORT_LIMIT,
    rate_limit_exceeded_handler,
)


@pytest.mark.unit
class TestRateLimitHandler:
    def test_returns_429_with_retry_after(self):
        request = MagicMock()
        request.client.host = "203.0.113.7"
        exc = MagicMock(spec=RateLimitExceeded)
        exc.detail = "5 per 1 minute"

        response = rate_limit_exceeded_handler(request, exc)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        body = json.loads(response.body)
        assert body["retry_after"] == "5 per 1 minute"


@pytest.mark.unit
class TestLimits:
    def test_bulk_export_is_tighter_than_single_export(self):
        assert int(BULK_EXPORT_LIMIT.split("/")[0]) < int(EXPORT_LIMIT.split("/")[0])
