"""
test_config.py — Tests for settings validation.

Run with:
    pytest tests/test_config.py -v
"""

from __future__ import annotations

import pydantic
import pytest

from backend.app.core.config import Settings


class TestSettings:

    def test_defaults(self):
        cfg = Settings()
        assert cfg.WEATHER_CACHE_TTL_SECONDS == 1800
        assert cfg.WEATHER_RATE_LIMIT_DEFAULT_RETRY_AFTER == 60
        assert cfg.INTEGRATION_RETRY_BATCH_SIZE == 50
        assert cfg.INTEGRATION_RETRY_MAX_ATTEMPTS == 5

    def test_backend_is_case_insensitive(self):
        assert Settings(WEATHER_CACHE_BACKEND="Redis").WEATHER_CACHE_BACKEND == "redis"

    def test_unknown_cache_backend_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(WEATHER_CACHE_BACKEND="memcached")

    def test_unknown_backoff_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(INTEGRATION_RETRY_BACKOFF="linear")

    def test_environment_flags(self):
        assert Settings(ENVIRONMENT="production").is_production is True
        assert Settings(ENVIRONMENT="production").is_development is False
