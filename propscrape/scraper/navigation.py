from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

from playwright.sync_api import Error as PWError, Page, TimeoutError as PWTimeout

from . import config
from .errors import NavigationError, NavigationTimeout
from .logging_utils import _scraper_event
from .utils import log_line


class NavigationDriver:
    """Drive the single scraping page to a URL and wait for it to load.

    Each call registers one scoped ``load`` waiter; the waiter is released on
    success, timeout or error, so no listener outlives its navigation.
    """

    def __init__(
        self,
        page: Page,
        *,
        timeout_seconds: Optional[float] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> None:
        self._page = page
        self._timeout_seconds = timeout_seconds or config.NAV_TIMEOUT_SECONDS
        self._sleep = sleep or time.sleep
        self._busy = threading.Lock()

    @property
    def page(self) -> Page:
        return self._page

    def navigate(self, url: str, *, settle: Optional[float] = None) -> None:
        if not self._busy.acquire(blocking=False):
            raise RuntimeError("navigation already in progress")
        try:
            self._navigate(url, settle)
        finally:
            self._busy.release()

    def _navigate(self, url: str, settle: Optional[float]) -> None:
        timeout_ms = self._timeout_seconds * 1000
        started = time.monotonic()
        try:
            with self._page.expect_event("load", timeout=timeout_ms):
                self._page.goto(url, wait_until="commit", timeout=timeout_ms)
        except PWTimeout as exc:
            _scraper_event("error", phase="navigate", kind="timeout", url=url)
            raise NavigationTimeout(
                f"Page load timeout after {self._timeout_seconds}s", url=url
            ) from exc
        except PWError as exc:
            _scraper_event("error", phase="navigate", kind="error", url=url, error=str(exc))
            raise NavigationError(f"Navigation failed: {exc}", url=url) from exc

        _scraper_event(
            "state",
            phase="navigate",
            url=url,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        if settle:
            self._sleep(settle)

    def return_to(self, url: Optional[str]) -> bool:
        """Best-effort navigation back to ``url``; never raises."""

        if not url:
            return False
        try:
            self.navigate(url)
            return True
        except (NavigationError, NavigationTimeout, RuntimeError) as exc:
            log_line(f"[NAV] Could not return to {url}: {exc}")
            return False


__all__ = ["NavigationDriver"]
