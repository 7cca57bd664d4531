"""Exception types shared by the store discovery pipeline."""

from __future__ import annotations

from typing import Any, Optional


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


class InvalidFilterState(ValueError):
    """Raised when a filter update would leave the search criteria invalid."""


class SearchError(RuntimeError):
    """Base class for failures of a single store query."""


class NetworkTimeout(SearchError):
    """The store API did not answer within the request timeout."""


class ServerError(SearchError):
    """Non-2xx status, transport failure, or an envelope that reports failure."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SearchFailed(SearchError):
    """Every step of the fallback ladder failed for one search intent."""

    def __init__(self, outcome: Any, attempts: int) -> None:
        reason = getattr(outcome, "failure_reason", None)
        super().__init__(f"store search failed after {attempts} attempt(s): {reason}")
        self.outcome = outcome
        self.attempts = attempts


class GeolocationError(RuntimeError):
    """Base class for live position failures."""


class GeolocationDenied(GeolocationError):
    """The position provider refused to share a location."""


class GeolocationUnavailable(GeolocationError):
    """No position could be determined."""


class GeolocationTimeout(GeolocationError):
    """The position provider did not answer in time."""
