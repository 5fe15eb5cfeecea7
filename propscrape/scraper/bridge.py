"""Request/response extraction against the loaded page.

The primary path calls the extractor installed by the browser init script;
the fallback path evaluates a small self-contained procedure. A rate-limit
probe runs before either path.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from playwright.sync_api import Error as PWError, Page

from . import config
from .errors import ExtractionFailed, RateLimited
from .logging_utils import _scraper_event
from .page_scripts import (
    BRIDGE_CALL_SCRIPT,
    FALLBACK_DETAILS_SCRIPT,
    FALLBACK_URLS_SCRIPT,
    RATE_LIMIT_PROBE_SCRIPT,
    SELECTORS,
)
from .utils import log_line

RATE_LIMIT_URL_MARKERS = ("/429", "rate-limited", "too-many-requests")
RATE_LIMIT_TITLE_MARKERS = ("429", "Too Many Requests", "Rate Limited")


class ExtractionMode(str, Enum):
    COLLECT_URLS = "collectUrls"
    COLLECT_DETAILS = "collectDetails"


@dataclass(frozen=True)
class ExtractionRequest:
    mode: ExtractionMode
    page_number: Optional[int] = None
    property_index: Optional[int] = None

    @classmethod
    def for_listing(cls, page_number: int) -> "ExtractionRequest":
        return cls(mode=ExtractionMode.COLLECT_URLS, page_number=page_number)

    @classmethod
    def for_detail(cls, property_index: int) -> "ExtractionRequest":
        return cls(mode=ExtractionMode.COLLECT_DETAILS, property_index=property_index)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"mode": self.mode.value}
        if self.page_number is not None:
            payload["pageNumber"] = self.page_number
        if self.property_index is not None:
            payload["propertyIndex"] = self.property_index
        return payload


@dataclass
class ExtractionResult:
    """``data`` is a URL list for listing requests and a field mapping for details."""

    data: Union[List[str], Dict[str, Any]]
    status: str = "primary"

    @property
    def is_fallback(self) -> bool:
        return self.status == "fallback"


def _normalise_data(request: ExtractionRequest, data: Any) -> Optional[Union[List[str], Dict[str, Any]]]:
    if request.mode is ExtractionMode.COLLECT_URLS:
        if isinstance(data, Mapping):
            data = data.get("urls")
        if not isinstance(data, list):
            return None
        return [url for url in data if isinstance(url, str)]
    if isinstance(data, Mapping) and not data.get("error"):
        return dict(data)
    return None


class ExtractionBridge:
    def __init__(self, page: Page, *, message_timeout_seconds: Optional[float] = None) -> None:
        self._page = page
        self._timeout_ms = int((message_timeout_seconds or config.MESSAGE_TIMEOUT_SECONDS) * 1000)

    # ------------------------------------------------------------------
    # Rate-limit guard
    # ------------------------------------------------------------------

    def detect_rate_limit(self) -> Optional[str]:
        """Return a reason string when the loaded page is a rate-limit page."""

        url = self._page.url or ""
        if any(marker in url for marker in RATE_LIMIT_URL_MARKERS):
            return f"Rate limit detected in URL ({url})"

        try:
            title = self._page.title() or ""
        except PWError as exc:
            log_line(f"[EXTRACT] Could not read page title: {exc}")
            title = ""
        if any(marker in title for marker in RATE_LIMIT_TITLE_MARKERS):
            return "Rate limit detected (HTTP 429)"

        try:
            flagged = self._page.evaluate(RATE_LIMIT_PROBE_SCRIPT)
        except PWError as exc:
            log_line(f"[EXTRACT] Could not check for rate limiting, proceeding with scrape: {exc}")
            return None
        if flagged is True:
            return "Rate limit detected in page content"
        return None

    # ------------------------------------------------------------------
    # Extraction paths
    # ------------------------------------------------------------------

    def _primary(self, request: ExtractionRequest) -> Optional[Union[List[str], Dict[str, Any]]]:
        try:
            response = self._page.evaluate(
                BRIDGE_CALL_SCRIPT,
                {"request": request.to_payload(), "timeoutMs": self._timeout_ms},
            )
        except PWError as exc:
            log_line(f"[EXTRACT] Error communicating with page extractor: {exc}")
            return None
        if not isinstance(response, Mapping) or not response.get("success"):
            reason = response.get("error") if isinstance(response, Mapping) else "no response"
            log_line(f"[EXTRACT] Page extractor failed: {reason}")
            return None
        return _normalise_data(request, response.get("data"))

    def _fallback(self, request: ExtractionRequest) -> Optional[Union[List[str], Dict[str, Any]]]:
        log_line("[EXTRACT] Using fallback direct scraping method...")
        try:
            if request.mode is ExtractionMode.COLLECT_URLS:
                raw = self._page.evaluate(FALLBACK_URLS_SCRIPT, SELECTORS["property_links"])
            else:
                raw = self._page.evaluate(
                    FALLBACK_DETAILS_SCRIPT,
                    {"address": SELECTORS["address"], "price": SELECTORS["price"]},
                )
        except PWError as exc:
            log_line(f"[EXTRACT] Fallback evaluation failed: {exc}")
            return None
        if isinstance(raw, Mapping) and raw.get("error"):
            log_line(f"[EXTRACT] {raw.get('error')}")
            return None
        return _normalise_data(request, raw)

    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        reason = self.detect_rate_limit()
        if reason:
            _scraper_event("extract", phase="rate_limit_probe", mode=request.mode.value, reason=reason)
            raise RateLimited(reason, url=self._page.url)

        data = self._primary(request)
        if data is not None:
            _scraper_event("extract", mode=request.mode.value, status="primary")
            return ExtractionResult(data=data, status="primary")

        data = self._fallback(request)
        if data is not None:
            _scraper_event("extract", mode=request.mode.value, status="fallback")
            return ExtractionResult(data=data, status="fallback")

        _scraper_event("error", phase="extract", mode=request.mode.value, url=self._page.url)
        raise ExtractionFailed(
            "Both content script and fallback scraping failed", url=self._page.url
        )


__all__ = [
    "ExtractionMode",
    "ExtractionRequest",
    "ExtractionResult",
    "ExtractionBridge",
    "RATE_LIMIT_URL_MARKERS",
    "RATE_LIMIT_TITLE_MARKERS",
]
