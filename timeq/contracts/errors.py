"""
Error taxonomy for the billing engine.

Only RequestValidationError reaches the caller of an analysis run. The other
errors are raised inside a component and absorbed at its boundary: the
aggregator isolates SourceFetchError/ConfigurationError per connector, the
classifier absorbs ClassificationError, and push collects PushError per entry.
"""

from __future__ import annotations


class TimeqError(Exception):
    """Base exception for timeq errors."""

    pass


class RequestValidationError(TimeqError):
    """Malformed request: bad or inverted window, or no source configured."""

    pass


class ConfigurationError(TimeqError):
    """A component is missing credentials, paths, or other required settings."""

    pass


class SourceFetchError(TimeqError):
    """A configured connector failed at runtime (network, auth, parse)."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.reason = message


class ClassificationError(TimeqError):
    """AI classification timed out or returned an unusable response."""

    pass


class PushError(TimeqError):
    """A single ledger write-back entry failed validation or posting."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
