"""Exception hierarchy for the aggregation core."""
from typing import Optional


class DigitalTideError(Exception):
    """Base class for all errors raised by digitaltide."""


class ConfigurationError(DigitalTideError, ValueError):
    """Invalid weights, thresholds or options passed to a component."""


class SourceError(DigitalTideError):
    """A single source failed to deliver articles."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class SourceTimeoutError(SourceError):
    """Source exceeded its fetch timeout."""


class QuotaExceededError(SourceError):
    """Source request quota is exhausted (locally or reported upstream)."""


class MalformedResponseError(SourceError):
    """Source answered with a payload that could not be interpreted."""
