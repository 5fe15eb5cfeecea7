"""Exception hierarchy raised by the scraper components."""
from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode


class ScraperError(Exception):
    """Base class; ``code`` is an :class:`ErrorCode` value."""

    code: str = ErrorCode.INTERNAL

    def __init__(self, message: str = "", *, url: Optional[str] = None) -> None:
        super().__init__(message or self.code)
        self.url = url


class NavigationTimeout(ScraperError):
    code = ErrorCode.NAVIGATION_TIMEOUT


class NavigationError(ScraperError):
    code = ErrorCode.NAVIGATION


class RateLimited(ScraperError):
    code = ErrorCode.RATE_LIMITED


class ExtractionFailed(ScraperError):
    code = ErrorCode.EXTRACTION_FAILED


class InvalidIndex(ScraperError):
    code = ErrorCode.INVALID_INDEX


class NoUrlsCollected(ScraperError):
    code = ErrorCode.NO_URLS_COLLECTED


class NoData(ScraperError):
    code = ErrorCode.NO_DATA


class PersistenceFailure(ScraperError):
    code = ErrorCode.PERSISTENCE


def error_code_for(exc: BaseException) -> str:
    """Return the taxonomy code for *exc*, ``internal_error`` for foreign errors."""

    if isinstance(exc, ScraperError):
        return exc.code
    return ErrorCode.INTERNAL


__all__ = [
    "ScraperError",
    "NavigationTimeout",
    "NavigationError",
    "RateLimited",
    "ExtractionFailed",
    "InvalidIndex",
    "NoUrlsCollected",
    "NoData",
    "PersistenceFailure",
    "error_code_for",
]
