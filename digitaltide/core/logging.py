"""Structured logging configuration using dictConfig."""
import logging
import logging.config
import sys
from typing import Dict, Any, Optional

from .settings import get_settings

PACKAGE_LOGGER = "digitaltide"

# Chatty client libraries, capped at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "redis", "asyncio")

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _use_json() -> bool:
    settings = get_settings()
    if settings.log_json is not None:
        return settings.log_json
    return settings.environment == "production"


def _formatters(service_name: Optional[str]) -> Dict[str, Any]:
    console_format = CONSOLE_FORMAT
    if service_name:
        console_format = f"%(asctime)s [{service_name}] [%(levelname)s] %(name)s: %(message)s"

    json_formatter: Dict[str, Any] = {
        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
        "fmt": JSON_FORMAT,
        "datefmt": DATE_FORMAT,
    }
    if service_name:
        # Every JSON record carries the service it came from
        json_formatter["static_fields"] = {"service": service_name}

    return {
        "json": json_formatter,
        "console": {"format": console_format, "datefmt": DATE_FORMAT},
    }


def get_logging_config(service_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the dictConfig for the package.

    Records from ``digitaltide.*`` go to stdout at ``LOG_LEVEL``. JSON output
    is used in production or when ``LOG_JSON`` forces it.
    """
    settings = get_settings()
    level = settings.log_level.upper()

    loggers: Dict[str, Any] = {
        PACKAGE_LOGGER: {"level": level, "handlers": ["console"], "propagate": False},
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING", "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": _formatters(service_name),
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if _use_json() else "console",
                "stream": sys.stdout,
            }
        },
        "loggers": loggers,
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging(service_name: Optional[str] = None) -> None:
    """Configure structured logging using dictConfig."""
    logging.config.dictConfig(get_logging_config(service_name))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
