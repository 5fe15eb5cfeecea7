"""Cookie/session reset plus a randomised pause, run before batches and retries."""

from __future__ import annotations

import random
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from playwright.sync_api import BrowserContext, Error as PWError

from . import config
from .logging_utils import _scraper_event
from .utils import log_line


@dataclass
class MitigationResult:
    success: bool
    cleared_count: int = 0
    delay_seconds: float = 0.0
    error: Optional[str] = None


def _cookie_in_domain(cookie: dict[str, Any], domain: str) -> bool:
    cookie_domain = str(cookie.get("domain") or "").lstrip(".").lower()
    return cookie_domain == domain or cookie_domain.endswith("." + domain)


class RateLimitMitigator:
    """Best-effort cookie clearing for the target domain followed by a delay.

    Every step tolerates its own failures; the result is diagnostic only and
    callers never gate progress on it.
    """

    def __init__(
        self,
        context: BrowserContext,
        *,
        domain: Optional[str] = None,
        cookie_names: Optional[Iterable[str]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._context = context
        self._domain = (domain or config.TARGET_DOMAIN).lower()
        self._cookie_names = tuple(cookie_names if cookie_names is not None else config.SESSION_COOKIE_NAMES)
        self._sleep = sleep or time.sleep
        self._rng = rng or random.Random()
        self._domain_pattern = re.compile(rf"(^|\.){re.escape(self._domain)}$", re.IGNORECASE)

    def _clear_known_cookies(self) -> None:
        for name in self._cookie_names:
            try:
                self._context.clear_cookies(name=name, domain=self._domain_pattern)
            except PWError as exc:
                log_line(f"[COOKIES] Cookie {name} could not be removed: {exc}")

    def _clear_domain_cookies(self) -> int:
        cookies = [c for c in self._context.cookies() if _cookie_in_domain(c, self._domain)]
        log_line(f"[COOKIES] Found {len(cookies)} cookies to clear for {self._domain}")
        cleared = 0
        for cookie in cookies:
            try:
                self._context.clear_cookies(
                    name=cookie.get("name"),
                    domain=cookie.get("domain"),
                    path=cookie.get("path") or "/",
                )
                cleared += 1
            except PWError as exc:
                log_line(f"[COOKIES] Failed to clear cookie {cookie.get('name')}: {exc}")
        return cleared

    def random_delay(self) -> float:
        low = config.MITIGATION_DELAY_MIN_SECONDS
        high = max(low, config.MITIGATION_DELAY_MAX_SECONDS)
        delay = self._rng.uniform(low, high)
        log_line(f"[COOKIES] Adding random delay of {delay:.1f}s to avoid detection")
        self._sleep(delay)
        return delay

    def mitigate(self) -> MitigationResult:
        log_line("[COOKIES] Clearing cookies and session data to avoid rate limiting...")
        self._clear_known_cookies()
        try:
            cleared = self._clear_domain_cookies()
        except PWError as exc:
            log_line(f"[COOKIES][ERROR] Error clearing domain cookies: {exc}")
            delay = self.random_delay()
            _scraper_event("error", phase="mitigation", error=str(exc), delay_seconds=round(delay, 2))
            return MitigationResult(success=False, delay_seconds=delay, error=str(exc))

        delay = self.random_delay()
        _scraper_event("state", phase="mitigation", cleared=cleared, delay_seconds=round(delay, 2))
        return MitigationResult(success=True, cleared_count=cleared, delay_seconds=delay)


__all__ = ["RateLimitMitigator", "MitigationResult"]
