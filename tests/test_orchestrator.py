from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from propscrape.scraper import config
from propscrape.scraper.bridge import ExtractionMode, ExtractionRequest, ExtractionResult
from propscrape.scraper.error_codes import ErrorCode
from propscrape.scraper.errors import ExtractionFailed, NavigationTimeout, RateLimited
from propscrape.scraper.events import EventLog
from propscrape.scraper.models import JobState, PropertyRecord, ScrapeStatus
from propscrape.scraper.orchestrator import (
    OrchestratorSession,
    Phase,
    ScrapeOrchestrator,
    StallWatchdog,
)
from propscrape.scraper.rate_limit import MitigationResult
from propscrape.scraper.state import StateStore
from tests.test_state_store import _configure_temp_paths

LISTING = "https://www.realestate.com.au/buy/in-richmond,+vic+3121/list-1?activeSort=list-date"
BASE = "https://www.realestate.com.au/buy/in-richmond,+vic+3121"


def _prop(n: int) -> str:
    return f"https://www.realestate.com.au/property-house-vic-richmond-{n}"


def _page(n: int) -> str:
    return f"{BASE}/list-{n}?activeSort=list-date"


class FakeNavigator:
    def __init__(self, failures: Optional[Dict[str, List[Exception]]] = None) -> None:
        self.visits: List[str] = []
        self.returned_to: List[str] = []
        self.failures = failures or {}

    def navigate(self, url: str, *, settle: Optional[float] = None) -> None:
        self.visits.append(url)
        queue = self.failures.get(url)
        if queue:
            raise queue.pop(0)

    def return_to(self, url: Optional[str]) -> bool:
        self.returned_to.append(url or "")
        return True


class FakeBridge:
    """Listing pages map page number to URLs; detail failures map index to errors."""

    def __init__(
        self,
        listings: Dict[int, List[str]],
        *,
        detail_failures: Optional[Dict[int, List[Exception]]] = None,
        on_extract: Optional[Callable[[ExtractionRequest], None]] = None,
    ) -> None:
        self.listings = listings
        self.detail_failures = detail_failures or {}
        self.on_extract = on_extract
        self.requests: List[ExtractionRequest] = []

    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        self.requests.append(request)
        if self.on_extract is not None:
            self.on_extract(request)
        if request.mode is ExtractionMode.COLLECT_URLS:
            return ExtractionResult(data=list(self.listings.get(request.page_number, [])))
        queue = self.detail_failures.get(request.property_index)
        if queue:
            error = queue[0] if len(queue) == 1 else queue.pop(0)
            raise error
        index = request.property_index
        return ExtractionResult(
            data={"address": f"{index} Swan St", "price": "$900,000", "features": {"indoor": ["Ducted heating"]}}
        )


class FakeMitigator:
    def __init__(self) -> None:
        self.calls = 0

    def mitigate(self) -> MitigationResult:
        self.calls += 1
        return MitigationResult(success=True)


@pytest.fixture
def fast_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    monkeypatch.setattr(config, "BATCH_SIZE", 2)
    monkeypatch.setattr(config, "LISTING_SETTLE_SECONDS", 0.0)
    monkeypatch.setattr(config, "DETAIL_SETTLE_SECONDS", 0.0)


@pytest.fixture
def session() -> OrchestratorSession:
    recorded = OrchestratorSession()
    recorded.waits = []  # type: ignore[attr-defined]

    def _wait(seconds: float) -> bool:
        recorded.waits.append(seconds)  # type: ignore[attr-defined]
        return recorded.stop_event.is_set()

    recorded.wait = _wait  # type: ignore[method-assign]
    return recorded


def _build(
    bridge: FakeBridge,
    session: OrchestratorSession,
    navigator: Optional[FakeNavigator] = None,
) -> tuple[ScrapeOrchestrator, FakeNavigator, FakeMitigator, List[Dict[str, Any]]]:
    navigator = navigator or FakeNavigator()
    mitigator = FakeMitigator()
    events = EventLog()
    seen: List[Dict[str, Any]] = []
    events.subscribe(seen.append)
    orchestrator = ScrapeOrchestrator(
        store=StateStore(),
        navigator=navigator,  # type: ignore[arg-type]
        bridge=bridge,  # type: ignore[arg-type]
        mitigator=mitigator,  # type: ignore[arg-type]
        events=events,
        session=session,
    )
    return orchestrator, navigator, mitigator, seen


def test_full_run_collects_and_scrapes_every_url(fast_config, session) -> None:
    bridge = FakeBridge(
        {
            1: [_prop(1), _prop(2), _prop(3), "https://example.com/property-x"],
            2: [_prop(3), f" {_prop(4)} ", _prop(5)],
        }
    )
    orchestrator, navigator, mitigator, seen = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=2, delay=0.5)

    assert session.phase is Phase.FINISHED
    assert [ref.url for ref in state.property_urls] == [_prop(n) for n in range(1, 6)]
    assert navigator.visits[:2] == [_page(1), _page(2)]
    assert navigator.visits[2:] == [_prop(n) for n in range(1, 6)]
    assert navigator.returned_to == [LISTING]
    assert state.current_batch_index == 3
    assert mitigator.calls == 3
    assert all(r.scrape_status is ScrapeStatus.SUCCESS for r in state.scraped_data.values())
    assert sorted(state.scraped_data) == [0, 1, 2, 3, 4]
    assert state.scraped_data[2].address == "2 Swan St"

    persisted = StateStore().load()
    assert persisted.to_dict() == state.to_dict()
    assert persisted.url_collection_complete is True

    complete = [e for e in seen if e["type"] == "complete"]
    assert complete[-1]["partial"] is False
    assert complete[-1]["successCount"] == 5
    assert 0.5 in session.waits  # inter-page delay


def test_rate_limited_item_retries_three_times_then_errors(fast_config, session) -> None:
    bridge = FakeBridge(
        {1: [_prop(1), _prop(2), _prop(3)]},
        detail_failures={1: [RateLimited("Rate limit detected in page content")]},
    )
    orchestrator, navigator, mitigator, _ = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=1, delay=0)

    record = state.scraped_data[1]
    assert record.scrape_status is ScrapeStatus.ERROR
    assert "Rate limit" in (record.error or "")
    assert state.property_urls[1].scrape_attempts == 4
    assert navigator.visits.count(_prop(2)) == 4
    assert state.scraped_data[2].scrape_status is ScrapeStatus.SUCCESS

    backoffs = [w for w in session.waits if w >= config.BACKOFF_BASE_SECONDS]
    assert len(backoffs) == 3
    assert backoffs[0] < backoffs[1] < backoffs[2]

    rate_errors = [e for e in state.errors if e.code == ErrorCode.RATE_LIMITED]
    assert len(rate_errors) == 4
    assert all(e.property_index == 1 for e in rate_errors)
    # Two batches plus one mitigation before each retry.
    assert mitigator.calls == 2 + 3


def test_other_failures_degrade_without_retry(fast_config, session) -> None:
    bridge = FakeBridge(
        {1: [_prop(1), _prop(2)]},
        detail_failures={0: [ExtractionFailed("Both content script and fallback scraping failed")]},
    )
    orchestrator, navigator, _, _ = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=1, delay=0)

    assert state.scraped_data[0].scrape_status is ScrapeStatus.ERROR
    assert state.property_urls[0].scrape_attempts == 1
    assert navigator.visits.count(_prop(1)) == 1
    assert state.scraped_data[1].scrape_status is ScrapeStatus.SUCCESS
    assert session.phase is Phase.FINISHED


def test_listing_page_failure_is_retried_once(fast_config, session) -> None:
    navigator = FakeNavigator({_page(2): [NavigationTimeout("Page load timeout after 30s")]})
    bridge = FakeBridge({1: [_prop(1)], 2: [_prop(2)]})
    orchestrator, _, _, _ = _build(bridge, session, navigator)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=2, delay=0)

    assert navigator.visits.count(_page(2)) == 2
    assert [ref.url for ref in state.property_urls] == [_prop(1), _prop(2)]
    assert state.errors[0].page == 2
    assert state.errors[0].code == ErrorCode.NAVIGATION_TIMEOUT
    assert config.PAGE_RETRY_DELAY_SECONDS in session.waits


def test_zero_urls_halts_job(fast_config, session) -> None:
    bridge = FakeBridge({1: [], 2: []})
    orchestrator, navigator, _, seen = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=2, delay=0)

    assert session.phase is Phase.HALTED
    assert navigator.visits == [_page(1), _page(2)]
    assert state.errors[-1].code == ErrorCode.NO_URLS_COLLECTED
    assert any(e["type"] == "error" for e in seen)
    complete = [e for e in seen if e["type"] == "complete"]
    assert complete[-1]["halted"] is True
    assert session.done_event.is_set()


def test_resuming_a_job_without_urls_halts_again(fast_config, session) -> None:
    StateStore().save(
        JobState(current_page=2, end_page=2, url_collection_complete=True, original_page_url=LISTING)
    )
    bridge = FakeBridge({})
    orchestrator, navigator, _, seen = _build(bridge, session)

    state = orchestrator.run(resume=True)

    assert session.phase is Phase.HALTED
    assert navigator.visits == []
    assert state.errors[-1].code == ErrorCode.NO_URLS_COLLECTED
    assert state.partial_scrape is True
    complete = [e for e in seen if e["type"] == "complete"]
    assert complete[-1]["halted"] is True


def test_stop_preserves_scraped_records(fast_config, session) -> None:
    def _stop_after_second_detail(request: ExtractionRequest) -> None:
        if request.mode is ExtractionMode.COLLECT_DETAILS and request.property_index == 1:
            session.request_stop()

    bridge = FakeBridge(
        {1: [_prop(n) for n in range(1, 6)]},
        on_extract=_stop_after_second_detail,
    )
    orchestrator, navigator, _, seen = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=1, delay=0)

    assert session.phase is Phase.STOPPED
    assert sorted(state.scraped_data) == [0, 1]
    assert all(r.scrape_status is ScrapeStatus.SUCCESS for r in state.scraped_data.values())
    assert state.partial_scrape is True
    assert state.current_batch_index == 0
    assert navigator.returned_to == [LISTING]

    persisted = StateStore().load()
    assert persisted.partial_scrape is True
    assert sorted(persisted.scraped_data) == [0, 1]
    complete = [e for e in seen if e["type"] == "complete"]
    assert complete[-1]["partial"] is True


def test_resume_continues_from_current_batch(fast_config, session) -> None:
    store = StateStore()
    previous = JobState(
        current_page=1,
        end_page=1,
        url_collection_complete=True,
        current_batch_index=1,
        original_page_url=LISTING,
    )
    previous.append_urls([_prop(n) for n in range(1, 5)])
    previous.set_record(0, PropertyRecord.success(_prop(1), {"address": "kept"}))
    previous.set_record(1, PropertyRecord.success(_prop(2), {"address": "kept"}))
    previous.partial_scrape = True
    store.save(previous)

    bridge = FakeBridge({})
    orchestrator, navigator, _, _ = _build(bridge, session)

    state = orchestrator.run(resume=True)

    assert navigator.visits == [_prop(3), _prop(4)]
    assert state.scraped_data[0].address == "kept"
    assert state.scraped_data[3].scrape_status is ScrapeStatus.SUCCESS
    assert state.partial_scrape is False
    assert session.phase is Phase.FINISHED


def test_watchdog_recollect_does_not_duplicate_urls(fast_config, session) -> None:
    def _request_recollect(request: ExtractionRequest) -> None:
        if request.mode is ExtractionMode.COLLECT_URLS and request.page_number == 1:
            session.request_recollect()

    bridge = FakeBridge({1: [_prop(1), _prop(2)]}, on_extract=_request_recollect)
    orchestrator, navigator, _, _ = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=1, delay=0)

    assert navigator.visits.count(_page(1)) == 2
    assert [ref.url for ref in state.property_urls] == [_prop(1), _prop(2)]


def test_forced_advance_happens_once_and_stale_requests_are_ignored(fast_config, session) -> None:
    def _post_requests(request: ExtractionRequest) -> None:
        if request.mode is not ExtractionMode.COLLECT_DETAILS:
            return
        if request.property_index == 0:
            session.request_batch_advance(0)
            session.request_batch_advance(0)
        if request.property_index == 2:
            session.request_batch_advance(0)

    bridge = FakeBridge({1: [_prop(n) for n in range(1, 5)]}, on_extract=_post_requests)
    orchestrator, navigator, mitigator, _ = _build(bridge, session)

    state = orchestrator.run(url=LISTING, start_page=1, end_page=1, delay=0)

    assert state.current_batch_index == 2
    assert state.scraped_data[0].scrape_status is ScrapeStatus.SUCCESS
    assert state.scraped_data[1].scrape_status is ScrapeStatus.NOT_SCRAPED
    assert state.scraped_data[2].scrape_status is ScrapeStatus.SUCCESS
    assert state.scraped_data[3].scrape_status is ScrapeStatus.SUCCESS
    assert _prop(2) not in navigator.visits
    assert [e.code for e in state.errors] == [ErrorCode.STALL]
    # Two batch mitigations plus the forced-advance pass.
    assert mitigator.calls == 3


def test_watchdog_check_posts_requests_by_phase() -> None:
    session = OrchestratorSession(clock=lambda: 1000.0)
    watchdog = StallWatchdog(session, interval_seconds=300, threshold_seconds=600)

    session.phase = Phase.COLLECTING_URLS
    session.last_page_success = 500.0
    assert watchdog.check() is None
    session.last_page_success = 100.0
    assert watchdog.check() == "recollect"
    assert session.take_recollect() is True
    assert session.take_recollect() is False

    session.phase = Phase.SCRAPING_BATCH
    session.current_batch_index = 4
    session.last_record_progress = 0.0
    assert watchdog.check(now=700.0) == "advance"
    assert session.take_batch_advance() == 4
    assert session.take_batch_advance() is None

    session.phase = Phase.BATCH_DONE
    assert watchdog.check(now=10_000.0) is None
