from __future__ import annotations

"""Error code taxonomy for scraper failures.

Codes are written into the ``errors`` log of the persisted job state and into
structured log lines, so they should stay stable for anyone reading exports.
"""


class ErrorCode:
    NAVIGATION_TIMEOUT = "navigation_timeout"
    NAVIGATION = "navigation_error"
    RATE_LIMITED = "rate_limited"
    EXTRACTION_FAILED = "extraction_failed"
    INVALID_INDEX = "invalid_index"
    NO_URLS_COLLECTED = "no_urls_collected"
    NO_DATA = "no_data"
    PERSISTENCE = "persistence_failure"
    STALL = "stall_recovery"
    INTERNAL = "internal_error"


__all__ = ["ErrorCode"]
