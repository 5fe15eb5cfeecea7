"""Playwright launch helpers for the scraping worker thread."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from playwright.sync_api import BrowserContext, Page, sync_playwright

from . import config
from .page_scripts import build_init_script
from .utils import log_line


@contextmanager
def open_browser(*, headless: Optional[bool] = None) -> Iterator[Tuple[BrowserContext, Page]]:
    """Launch Chromium with the extractor installed and yield ``(context, page)``.

    The sync API binds to the calling thread, so this must be entered on the
    thread that drives the scrape.
    """

    run_headless = config.HEADLESS if headless is None else headless
    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=run_headless)
        try:
            context = browser.new_context(
                user_agent=config.USER_AGENT,
                locale="en-AU",
                extra_http_headers=config.COMMON_HEADERS,
            )
            context.set_default_navigation_timeout(config.NAV_TIMEOUT_SECONDS * 1000)
            context.add_init_script(script=build_init_script())
            page = context.new_page()
            log_line(f"[BROWSER] Chromium started (headless={run_headless})")
            yield context, page
        finally:
            browser.close()
            log_line("[BROWSER] Chromium closed")


__all__ = ["open_browser"]
