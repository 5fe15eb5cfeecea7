from __future__ import annotations

import random
from typing import Callable, Optional

from . import config
from .errors import RateLimited
from .logging_utils import _scraper_event

RATE_LIMIT_MARKERS = ("rate limit", "429", "too many requests")


def is_rate_limit_error(error: BaseException | str | None) -> bool:
    """Return ``True`` when *error* looks like a rate-limit rejection.

    Matching is keyword based and applies to any error origin: navigation,
    extraction, or content inspection.
    """

    if error is None:
        return False
    if isinstance(error, RateLimited):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def compute_backoff_seconds(
    retry_count: int,
    base: Optional[float] = None,
    *,
    jitter: Optional[Callable[[float, float], float]] = None,
) -> float:
    """Return ``2**retry_count * base`` plus up to 10s of jitter, capped at 5 min."""

    base_seconds = config.BACKOFF_BASE_SECONDS if base is None else base
    jitter_fn = jitter or random.uniform
    delay = (2 ** max(0, retry_count)) * base_seconds + jitter_fn(0.0, config.BACKOFF_JITTER_SECONDS)
    return float(min(delay, config.BACKOFF_CAP_SECONDS))


def decide_retry(
    retry_count: int,
    max_retries: int,
    error: BaseException | None = None,
    *,
    property_index: Optional[int] = None,
) -> bool:
    """Decide whether a failed detail scrape should be retried.

    ``retry_count`` is the number of retries already spent on this property.
    Only rate-limit failures are retried; anything else degrades to an error
    record immediately.
    """

    if not is_rate_limit_error(error):
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="non_retryable",
            retry_count=retry_count,
            max_retries=max_retries,
            property_index=property_index,
            will_retry=False,
            error_repr=repr(error) if error is not None else None,
        )
        return False

    if retry_count >= max_retries:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="capped",
            retry_count=retry_count,
            max_retries=max_retries,
            property_index=property_index,
            will_retry=False,
        )
        return False

    _scraper_event(
        "state",
        phase="retry_decision",
        kind="rate_limited",
        retry_count=retry_count,
        max_retries=max_retries,
        property_index=property_index,
        will_retry=True,
    )
    return True


__all__ = ["decide_retry", "compute_backoff_seconds", "is_rate_limit_error", "RATE_LIMIT_MARKERS"]
