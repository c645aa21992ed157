"""
Opportunity Board - Settings and Logging Tests
==============================================
"""

import pytest
import structlog

from opportunity_board.core import logging_config
from opportunity_board.core.config import Settings, get_settings
from opportunity_board.core.logging_config import configure_logging


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.SERIALIZE_PARTITION_MUTATIONS is False
        assert settings.FILTER_DEBOUNCE_SECONDS == 0.3
        assert settings.CLIENT_FILTER_MAX_LENGTH == 100
        assert settings.STALE_AFTER_SECONDS == 300.0
        assert settings.COMPLETED_STALE_AFTER_SECONDS == 600.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SERIALIZE_PARTITION_MUTATIONS", "true")
        monkeypatch.setenv("environment", "production")

        settings = Settings(_env_file=None)

        assert settings.SERIALIZE_PARTITION_MUTATIONS is True
        assert settings.is_production
        assert not settings.is_development

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_configure_is_idempotent(self, monkeypatch):
        monkeypatch.setattr(logging_config, "_configured", False)
        configure_logging(Settings(_env_file=None))

        configure_logging(Settings(_env_file=None, ENVIRONMENT="production"))

        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.dev.ConsoleRenderer)

    def test_production_renders_json(self, monkeypatch):
        monkeypatch.setattr(logging_config, "_configured", False)
        configure_logging(Settings(_env_file=None, ENVIRONMENT="production"))

        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.processors.JSONRenderer)
