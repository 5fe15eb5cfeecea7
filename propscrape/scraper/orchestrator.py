"""Batch orchestrator: listing pagination, detail batches, stop and stall handling.

One orchestrator drives one job on one worker thread and is the only writer
of :class:`JobState`. The state is persisted after every step that changes
it, so a hard kill loses at most the item in flight.
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from . import config
from .bridge import ExtractionBridge, ExtractionRequest
from .error_codes import ErrorCode
from .errors import NoUrlsCollected, error_code_for
from .events import EventLog
from .logging_utils import _scraper_event
from .models import JobState, PropertyRecord, ScrapeStatus
from .navigation import NavigationDriver
from .rate_limit import RateLimitMitigator
from .retry_policy import compute_backoff_seconds, decide_retry
from .state import StateStore
from .urls import BaseListingUrl, construct_page_url, extract_base_url, filter_property_urls
from .utils import log_line


class Phase(str, Enum):
    IDLE = "idle"
    COLLECTING_URLS = "collecting_urls"
    URLS_COMPLETE = "urls_complete"
    SCRAPING_BATCH = "scraping_batch"
    BATCH_DONE = "batch_done"
    FINISHED = "finished"
    STOPPED = "stopped"
    HALTED = "halted"


TERMINAL_PHASES = frozenset({Phase.FINISHED, Phase.STOPPED, Phase.HALTED})


@dataclass
class OrchestratorSession:
    """Mutable per-run values shared between the worker, watchdog and controller."""

    stop_event: threading.Event = field(default_factory=threading.Event)
    done_event: threading.Event = field(default_factory=threading.Event)
    clock: Callable[[], float] = time.monotonic
    phase: Phase = Phase.IDLE
    base: Optional[BaseListingUrl] = None
    current_batch_index: int = 0
    last_page_success: float = 0.0
    last_record_progress: float = 0.0
    _recollect_requested: bool = False
    _advance_batch_requested: Optional[int] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self) -> None:
        self.stop_event.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` if a stop was requested."""

        if seconds and seconds > 0:
            return self.stop_event.wait(seconds)
        return self.stop_event.is_set()

    def mark_page_success(self) -> None:
        self.last_page_success = self.clock()

    def mark_record_progress(self) -> None:
        self.last_record_progress = self.clock()

    def request_recollect(self) -> None:
        with self._lock:
            self._recollect_requested = True

    def request_batch_advance(self, batch_index: int) -> None:
        with self._lock:
            self._advance_batch_requested = batch_index

    def take_recollect(self) -> bool:
        with self._lock:
            requested, self._recollect_requested = self._recollect_requested, False
            return requested

    def take_batch_advance(self) -> Optional[int]:
        with self._lock:
            requested, self._advance_batch_requested = self._advance_batch_requested, None
            return requested


class ScrapeOrchestrator:
    def __init__(
        self,
        *,
        store: StateStore,
        navigator: NavigationDriver,
        bridge: ExtractionBridge,
        mitigator: RateLimitMitigator,
        events: Optional[EventLog] = None,
        session: Optional[OrchestratorSession] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.navigator = navigator
        self.bridge = bridge
        self.mitigator = mitigator
        self.events = events or EventLog()
        self.session = session or OrchestratorSession()
        self.rng = rng or random.Random()
        self.state = JobState()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        self.store.save(self.state)

    def _set_phase(self, phase: Phase) -> None:
        if self.session.phase is phase:
            return
        previous = self.session.phase
        self.session.phase = phase
        _scraper_event("phase", previous=previous, current=phase)
        self.events.emit("phase", phase=phase.value)

    def _status(self, message: str) -> None:
        log_line(f"[SCRAPER] {message}")
        self.events.emit("status", message=message)

    def _record_error(
        self,
        phase: str,
        exc: BaseException,
        *,
        page: Optional[int] = None,
        property_index: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        code = error_code_for(exc)
        self.state.add_error(
            phase,
            str(exc),
            page=page,
            property_index=property_index,
            url=url,
            code=code,
        )
        _scraper_event(
            "error",
            phase=phase,
            code=code,
            page=page,
            property_index=property_index,
            url=url,
            error=str(exc),
        )
        self.events.emit("error", message=str(exc), code=code, stage=phase)

    def _totals(self) -> Dict[str, Any]:
        stats = self.state.statistics()
        return {
            "totalUrls": stats["totalUrls"],
            "scrapedCount": stats["scrapedCount"],
            "successCount": stats["successCount"],
            "errorCount": stats["errorCount"],
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def _initial_state(
        self,
        *,
        url: Optional[str],
        start_page: int,
        end_page: int,
        delay: Optional[float],
        resume: bool,
    ) -> JobState:
        if resume and self.store.exists():
            state = self.store.load()
            if state.property_urls or state.url_collection_complete or state.current_page > 1:
                if delay is not None:
                    state.delay = delay
                if url and not state.original_page_url:
                    state.original_page_url = url
                state.partial_scrape = False
                self.store.save(state)
                log_line(
                    f"[SCRAPER] Resuming job at page {state.current_page}/{state.end_page}, "
                    f"batch {state.current_batch_index + 1}, {len(state.property_urls)} URLs known"
                )
                return state

        if start_page < 1 or end_page < start_page:
            raise ValueError(f"Invalid page range {start_page}..{end_page}")
        return self.store.reset(
            current_page=start_page,
            start_page=start_page,
            end_page=end_page,
            delay=config.DEFAULT_PAGE_DELAY_SECONDS if delay is None else delay,
            original_page_url=url or config.DEFAULT_LISTING_URL,
        )

    def run(
        self,
        *,
        url: Optional[str] = None,
        start_page: int = 1,
        end_page: int = 1,
        delay: Optional[float] = None,
        resume: bool = False,
    ) -> JobState:
        """Run the job to a terminal phase and return the final state."""

        self.state = self._initial_state(
            url=url, start_page=start_page, end_page=end_page, delay=delay, resume=resume
        )
        self.session.base = extract_base_url(self.state.original_page_url)
        self.session.current_batch_index = self.state.current_batch_index
        _scraper_event(
            "state",
            phase="start",
            base_path=self.session.base.base_path,
            start_page=self.state.start_page,
            end_page=self.state.end_page,
            resume=resume,
        )

        try:
            if not self.state.url_collection_complete:
                self._collect_urls()
                if self.session.stopped:
                    return self._finish_stopped()
                self._on_urls_complete()
            else:
                self._require_urls()

            self._scrape_batches()
            if self.session.stopped:
                return self._finish_stopped()
            return self._finish()
        except NoUrlsCollected as exc:
            return self._halt(exc, stage="url_collection")
        except Exception as exc:  # noqa: BLE001
            return self._halt(exc, stage="internal")
        finally:
            self.session.done_event.set()

    # ------------------------------------------------------------------
    # URL collection
    # ------------------------------------------------------------------

    def _collect_urls(self) -> None:
        self._set_phase(Phase.COLLECTING_URLS)
        self.session.mark_page_success()
        state = self.state

        while not self.session.stopped:
            page_number = state.current_page
            self._status(f"Collecting URLs from page {page_number}...")
            self._collect_page(page_number)
            if self.session.stopped:
                break
            if self.session.take_recollect():
                log_line(f"[WATCHDOG] Re-collecting page {page_number}")
                self._collect_page(page_number)
                if self.session.stopped:
                    break

            if state.current_page < state.end_page:
                state.current_page += 1
                self._persist()
                if self.session.wait(state.delay):
                    break
                continue

            state.url_collection_complete = True
            self._persist()
            break

    def _collect_page(self, page_number: int) -> bool:
        assert self.session.base is not None
        url = construct_page_url(self.session.base, page_number)

        for attempt in (1, 2):
            if self.session.stopped:
                return False
            try:
                self.navigator.navigate(url, settle=config.LISTING_SETTLE_SECONDS)
                result = self.bridge.extract(ExtractionRequest.for_listing(page_number))
            except Exception as exc:  # noqa: BLE001
                self._record_error("url_collection", exc, page=page_number, url=url)
                self._persist()
                if attempt == 1:
                    log_line(f"[SCRAPER] Retrying page {page_number}...")
                    if self.session.wait(config.PAGE_RETRY_DELAY_SECONDS):
                        return False
                    continue
                log_line(f"[SCRAPER] Giving up on page {page_number} after retry")
                return False

            found = result.data if isinstance(result.data, list) else []
            urls = filter_property_urls(found, exclude=self.state.known_urls())
            added = self.state.append_urls(urls)
            self.state.last_url_collection_time = time.time()
            self.session.mark_page_success()
            self._persist()
            log_line(
                f"[SCRAPER] Page {page_number}: found {len(found)} URLs, "
                f"{len(added)} new, {len(self.state.property_urls)} total ({result.status})"
            )
            self.events.emit(
                "progress",
                stage="url_collection",
                current=page_number,
                total=self.state.end_page,
                totalUrls=len(self.state.property_urls),
                added=len(added),
            )
            return True
        return False

    def _require_urls(self) -> None:
        """Batches only start when collection produced at least one URL."""

        if not self.state.property_urls:
            raise NoUrlsCollected("No property URLs were collected")

    def _on_urls_complete(self) -> None:
        self._set_phase(Phase.URLS_COMPLETE)
        self._require_urls()
        self.state.current_batch_index = 0
        self.session.current_batch_index = 0
        self._persist()
        self._status(
            f"URL collection complete: {len(self.state.property_urls)} properties, "
            f"{self.state.batch_window().total_batches} batches"
        )

    # ------------------------------------------------------------------
    # Detail batches
    # ------------------------------------------------------------------

    def _scrape_batches(self) -> None:
        state = self.state
        while not self.session.stopped:
            window = state.batch_window()
            if window.is_empty:
                return

            self._set_phase(Phase.SCRAPING_BATCH)
            self.session.current_batch_index = state.current_batch_index
            self.session.mark_record_progress()
            self._status(
                f"Processing batch {window.current_batch}/{window.total_batches} "
                f"(properties {window.start + 1}-{window.end})"
            )
            if config.MITIGATE_PER_BATCH:
                self.mitigator.mitigate()

            self._scrape_window(window.indices)
            if self.session.stopped:
                return

            self._advance_batch(window.current_batch - 1)
            self._set_phase(Phase.BATCH_DONE)
            if state.batch_window().is_empty:
                return
            pause = state.delay + self.rng.uniform(0.0, config.BATCH_JITTER_SECONDS)
            log_line(f"[SCRAPER] Pausing {pause:.1f}s before next batch")
            if self.session.wait(pause):
                return

    def _advance_batch(self, expected_index: int) -> bool:
        """Move to the next batch only if ``expected_index`` is still current."""

        if self.state.current_batch_index != expected_index:
            return False
        self.state.current_batch_index += 1
        self.session.current_batch_index = self.state.current_batch_index
        self._persist()
        return True

    def _scrape_window(self, indices: range) -> None:
        first = True
        for index in indices:
            if self.session.stopped:
                return
            tagged = self.session.take_batch_advance()
            if tagged is not None:
                if tagged == self.state.current_batch_index:
                    log_line(f"[WATCHDOG] Forcing advance past batch {tagged + 1}")
                    self.state.add_error(
                        "stall",
                        f"No progress in batch {tagged + 1}; forcing advance",
                        code=ErrorCode.STALL,
                    )
                    self.mitigator.mitigate()
                    return
                log_line(f"[WATCHDOG] Ignoring stale advance request for batch {tagged + 1}")

            existing = self.state.scraped_data.get(index)
            if existing is not None and existing.scrape_status is ScrapeStatus.SUCCESS:
                continue
            if not first and self.session.wait(config.ITEM_DELAY_SECONDS):
                return
            first = False
            self._scrape_item(index)

    def _scrape_item(self, index: int) -> None:
        state = self.state
        ref = state.property_urls[index]
        url = ref.url
        previous = state.scraped_data.get(index)
        pending = PropertyRecord.placeholder(url, ScrapeStatus.PENDING)
        state.set_record(index, pending)
        self._persist()

        retries = 0
        while True:
            ref.scrape_attempts += 1
            try:
                self.navigator.navigate(url, settle=config.DETAIL_SETTLE_SECONDS)
                result = self.bridge.extract(ExtractionRequest.for_detail(index))
            except Exception as exc:  # noqa: BLE001
                self._record_error("detail", exc, property_index=index, url=url)
                if not self.session.stopped and decide_retry(
                    retries, config.MAX_RATE_LIMIT_RETRIES, exc, property_index=index
                ):
                    backoff = compute_backoff_seconds(retries)
                    retries += 1
                    self._persist()
                    log_line(
                        f"[SCRAPER] Rate limited on property {index + 1}; retry {retries}/"
                        f"{config.MAX_RATE_LIMIT_RETRIES} in {backoff:.1f}s"
                    )
                    if config.MITIGATE_PER_RETRY:
                        self.mitigator.mitigate()
                    if not self.session.wait(backoff):
                        continue
                record = PropertyRecord.failure(
                    url, str(exc), attempts=ref.scrape_attempts, previous=previous
                )
                self._store_record(index, record)
                return

            details = result.data if isinstance(result.data, dict) else {}
            record = PropertyRecord.success(url, details, attempts=ref.scrape_attempts)
            self._store_record(index, record)
            return

    def _store_record(self, index: int, record: PropertyRecord) -> None:
        self.state.set_record(index, record)
        self.session.mark_record_progress()
        self._persist()
        window = self.state.batch_window()
        self.events.emit(
            "progress",
            stage="detail",
            index=index,
            status=record.scrape_status.value,
            current=self.state.completed_count(),
            total=len(self.state.property_urls),
            batch=window.current_batch,
            totalBatches=window.total_batches,
        )

    # ------------------------------------------------------------------
    # Terminal phases
    # ------------------------------------------------------------------

    def _finish(self) -> JobState:
        self._set_phase(Phase.FINISHED)
        self.navigator.return_to(self.state.original_page_url)
        added = self.state.ensure_complete_records()
        if added:
            log_line(f"[SCRAPER] Added {added} placeholder records for unscraped properties")
        self._persist()
        self.events.emit("complete", partial=False, **self._totals())
        self._status("Scraping complete")
        return self.state

    def _finish_stopped(self) -> JobState:
        self.state.compact()
        self.state.partial_scrape = True
        self._persist()
        self._set_phase(Phase.STOPPED)
        self.navigator.return_to(self.state.original_page_url)
        self.events.emit("complete", partial=True, **self._totals())
        self._status("Scraping stopped; partial data saved")
        return self.state

    def _halt(self, exc: BaseException, *, stage: str) -> JobState:
        log_line(f"[SCRAPER][ERROR] Job halted during {stage}: {exc!r}")
        self._record_error(stage, exc)
        self.state.compact()
        self.state.partial_scrape = True
        self._persist()
        self._set_phase(Phase.HALTED)
        self.events.emit("complete", partial=True, halted=True, reason=str(exc), **self._totals())
        return self.state


class StallWatchdog:
    """Periodic stall check that only posts requests to the session.

    The worker consumes the requests at its own checkpoints, so the
    watchdog never touches the page or the job state.
    """

    def __init__(
        self,
        session: OrchestratorSession,
        *,
        interval_seconds: Optional[float] = None,
        threshold_seconds: Optional[float] = None,
    ) -> None:
        self.session = session
        self.interval = interval_seconds or config.WATCHDOG_INTERVAL_SECONDS
        self.threshold = threshold_seconds or config.STALL_THRESHOLD_SECONDS

    def check(self, now: Optional[float] = None) -> Optional[str]:
        now = self.session.clock() if now is None else now
        phase = self.session.phase
        if phase is Phase.COLLECTING_URLS:
            if now - self.session.last_page_success > self.threshold:
                self.session.request_recollect()
                _scraper_event("state", phase="watchdog", action="recollect")
                return "recollect"
        elif phase is Phase.SCRAPING_BATCH:
            if now - self.session.last_record_progress > self.threshold:
                batch_index = self.session.current_batch_index
                self.session.request_batch_advance(batch_index)
                _scraper_event("state", phase="watchdog", action="advance", batch_index=batch_index)
                return "advance"
        return None

    def run(self) -> None:
        while not self.session.done_event.wait(self.interval):
            if self.session.stopped:
                return
            self.check()


__all__ = ["Phase", "TERMINAL_PHASES", "OrchestratorSession", "ScrapeOrchestrator", "StallWatchdog"]
