"""Tests for settings and logging configuration."""

import logging

import pytest

from digitaltide.core.logging import get_logger, get_logging_config, setup_logging
from digitaltide.core.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def restore_logging():
    """Undo handlers installed by setup_logging."""
    yield
    for name in ("digitaltide", "httpx", "httpcore", "redis", "asyncio", ""):
        logger = logging.getLogger(name or None)
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET if name else logging.WARNING)
        logger.propagate = True


class TestSettings:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("CACHE_TTL_SECONDS", "42")
        monkeypatch.setenv("DEFAULT_SOURCE_PRIORITY", "speed")
        settings = Settings()
        assert settings.cache_ttl_seconds == 42
        assert settings.default_source_priority == "speed"

    def test_singleton(self):
        assert get_settings() is get_settings()


class TestLoggingConfig:

    def test_console_formatter_outside_production(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        config = get_logging_config("aggregator")
        assert config["handlers"]["console"]["formatter"] == "console"
        assert "[aggregator]" in config["formatters"]["console"]["format"]

    def test_json_formatter_in_production(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        config = get_logging_config("aggregator")
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["formatters"]["json"]["()"] == "pythonjsonlogger.jsonlogger.JsonFormatter"
        assert config["formatters"]["json"]["static_fields"] == {"service": "aggregator"}

    def test_log_json_forces_json(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("LOG_JSON", "true")
        assert get_logging_config()["handlers"]["console"]["formatter"] == "json"

    def test_client_libraries_quieted(self):
        loggers = get_logging_config()["loggers"]
        assert loggers["httpx"]["level"] == "WARNING"
        assert loggers["digitaltide"]["propagate"] is False

    def test_setup_logging_applies_level(self, monkeypatch, restore_logging):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.setenv("ENVIRONMENT", "production")
        setup_logging("aggregator")
        assert logging.getLogger("digitaltide").level == logging.WARNING
        assert get_logger("digitaltide.aggregator").getEffectiveLevel() == logging.WARNING
