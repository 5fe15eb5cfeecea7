"""Playwright-driven scrape of real-estate listing pages.

Workflow:

- Paginate ``<base>/list-N`` listing pages and collect property detail URLs.
- Visit each detail URL in batches, extract the listing fields, and persist
  the job state after every step so the job can be resumed.
- Between batches and before rate-limit retries, clear the site's cookies
  and pause for a randomised interval.

``run_scrape`` runs one job on the calling thread; ``ScrapeController``
runs jobs on a background worker thread for the web UI.
"""

from __future__ import annotations

import argparse
import threading
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, List, Optional, Tuple

from playwright.sync_api import BrowserContext, Page

from . import config
from .bridge import ExtractionBridge
from .browser import open_browser
from .config_validation import validate_runtime_config
from .errors import NoData
from .events import EventLog
from .export_csv import export_records, write_csv_export
from .export_excel import export_records_to_excel
from .logging_utils import _scraper_event
from .navigation import NavigationDriver
from .orchestrator import OrchestratorSession, Phase, ScrapeOrchestrator, StallWatchdog
from .rate_limit import RateLimitMitigator
from .state import StateStore
from .utils import ensure_dirs, log_line, setup_run_logger

BrowserFactory = Callable[..., ContextManager[Tuple[BrowserContext, Page]]]


def run_scrape(
    url: Optional[str] = None,
    start_page: int = 1,
    end_page: int = 1,
    delay: Optional[float] = None,
    *,
    resume: bool = False,
    headless: Optional[bool] = None,
    session: Optional[OrchestratorSession] = None,
    events: Optional[EventLog] = None,
    store: Optional[StateStore] = None,
    browser_factory: BrowserFactory = open_browser,
) -> Dict[str, Any]:
    """Run one scraping job to completion and return a summary dict."""

    ensure_dirs()
    log_path = setup_run_logger()
    session = session or OrchestratorSession()
    events = events or EventLog()
    store = store or StateStore()

    log_line(
        f"[SCRAPER] Starting job url={url or '(resume)'} pages={start_page}-{end_page} "
        f"delay={delay if delay is not None else config.DEFAULT_PAGE_DELAY_SECONDS}s resume={resume}"
    )

    watchdog = StallWatchdog(session)
    watchdog_thread = threading.Thread(target=watchdog.run, name="stall-watchdog", daemon=True)

    with browser_factory(headless=headless) as (context, page):
        orchestrator = ScrapeOrchestrator(
            store=store,
            navigator=NavigationDriver(page, sleep=session.wait),
            bridge=ExtractionBridge(page),
            mitigator=RateLimitMitigator(context, sleep=session.wait),
            events=events,
            session=session,
        )
        watchdog_thread.start()
        try:
            state = orchestrator.run(
                url=url,
                start_page=start_page,
                end_page=end_page,
                delay=delay,
                resume=resume,
            )
        finally:
            session.done_event.set()

    summary: Dict[str, Any] = {
        "phase": session.phase.value,
        "partial": state.partial_scrape,
        "log_file": str(log_path),
        "state_file": str(store.path),
        **state.statistics(),
    }
    _scraper_event(
        "state",
        phase="summary",
        job_phase=summary["phase"],
        **{k: v for k, v in summary.items() if k not in {"phase", "progress"}},
    )
    return summary


class ScrapeController:
    """Start/stop/status/export commands over a single background job."""

    def __init__(
        self,
        *,
        store: Optional[StateStore] = None,
        events: Optional[EventLog] = None,
        runner: Callable[..., Dict[str, Any]] = run_scrape,
    ) -> None:
        self.store = store or StateStore()
        self.events = events or EventLog()
        self._runner = runner
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._session: Optional[OrchestratorSession] = None
        self.last_summary: Optional[Dict[str, Any]] = None

    @property
    def is_processing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def phase(self) -> Phase:
        return self._session.phase if self._session is not None else Phase.IDLE

    def start(
        self,
        start_page: int,
        end_page: int,
        delay: Optional[float] = None,
        url: Optional[str] = None,
        *,
        resume: bool = False,
        headless: Optional[bool] = None,
    ) -> bool:
        """Launch a job on a worker thread; ``False`` if one is already running."""

        if not resume:
            if start_page < 1 or end_page < start_page:
                raise ValueError("start_page must be >= 1 and end_page >= start_page")
            if url and not config.is_target_url(url):
                raise ValueError(f"URL must be on {config.TARGET_DOMAIN}")
        if delay is not None and delay < 0:
            raise ValueError("delay must be non-negative")

        with self._lock:
            if self.is_processing:
                return False
            session = OrchestratorSession()
            self._session = session

            def _run() -> None:
                try:
                    self.last_summary = self._runner(
                        url,
                        start_page,
                        end_page,
                        delay,
                        resume=resume,
                        headless=headless,
                        session=session,
                        events=self.events,
                        store=self.store,
                    )
                except Exception as exc:  # noqa: BLE001
                    session.phase = Phase.HALTED
                    log_line(f"Scrape thread failed: {exc}")
                    self.events.emit("error", message=str(exc), stage="worker")
                    self.events.emit("complete", partial=True, halted=True, reason=str(exc))

            self._thread = threading.Thread(target=_run, name="scrape-worker", daemon=True)
            self._thread.start()
        return True

    def stop(self) -> bool:
        """Request a cooperative stop; the in-flight item finishes first."""

        session = self._session
        if session is None or not self.is_processing:
            return False
        session.request_stop()
        log_line("[SCRAPER] Stop requested")
        self.events.emit("status", message="Stopping after the current item...")
        return True

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def status(self) -> Dict[str, Any]:
        state = self.store.load()
        return {
            "isProcessing": self.is_processing,
            "phase": self.phase.value,
            **state.statistics(),
        }

    def errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        entries = self.store.load().errors
        return [entry.to_dict() for entry in entries[-limit:]] if limit > 0 else []

    def download_export(self, dest_dir: Optional[Path] = None) -> Path:
        """Write a CSV export of the persisted records; raises ``NoData``."""

        path = write_csv_export(self.store.load(), dest_dir)
        self.events.emit("export_ready", filename=path.name, format="csv")
        return path

    def export_excel(self) -> str:
        records = export_records(self.store.load())
        if not records:
            raise NoData("No property data to export")
        path = export_records_to_excel(records)
        self.events.emit("export_ready", filename=Path(path).name, format="xlsx")
        return path

    def reset(self) -> None:
        if self.is_processing:
            raise RuntimeError("Cannot reset while a scrape is running")
        self.store.reset()
        self._session = None
        self.last_summary = None
        log_line("[STATE] Job state reset")


def _cli_entrypoint(argv: Optional[List[str]] = None) -> None:  # pragma: no cover
    parser = argparse.ArgumentParser(description="Run the Playwright listing scraper")
    parser.add_argument("--url", default=config.DEFAULT_LISTING_URL)
    parser.add_argument("--start-page", type=int, default=1)
    parser.add_argument("--end-page", type=int, default=1)
    parser.add_argument("--delay", type=float, default=config.DEFAULT_PAGE_DELAY_SECONDS)
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue the persisted job instead of starting fresh",
    )
    parser.add_argument("--headful", action="store_true", help="Show the browser window")

    args = parser.parse_args(argv)
    if args.start_page < 1 or args.end_page < args.start_page:
        parser.error("--start-page must be >= 1 and --end-page >= --start-page")

    ensure_dirs()
    validate_runtime_config("cli", mode="resume" if args.resume else "fresh")

    # Ctrl+C unwinds the job on this thread; state was persisted after the
    # last completed step, so the interrupt itself acts as the stop.
    try:
        summary = run_scrape(
            url=args.url,
            start_page=args.start_page,
            end_page=args.end_page,
            delay=args.delay,
            resume=args.resume,
            headless=not args.headful,
        )
    except KeyboardInterrupt:
        log_line("[SCRAPER] Interrupted; progress up to the last saved step is kept")
        raise SystemExit(130)
    log_line(f"[SCRAPER] Finished: {summary}")
    if summary["phase"] == Phase.HALTED.value:
        raise SystemExit(1)


if __name__ == "__main__":  # pragma: no cover
    _cli_entrypoint()

__all__ = ["run_scrape", "ScrapeController", "_cli_entrypoint"]
