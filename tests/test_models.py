from __future__ import annotations

import pytest

from propscrape.scraper.errors import InvalidIndex
from propscrape.scraper.models import (
    JobState,
    PropertyRecord,
    PropertyRef,
    ScrapeStatus,
    property_url,
)

BASE = "https://www.realestate.com.au/property-house-vic-"


def _state_with_urls(count: int, batch_size: int = 2) -> JobState:
    state = JobState(batch_size=batch_size)
    state.append_urls([f"{BASE}{i}" for i in range(count)])
    return state


def test_append_urls_dedupes_across_calls() -> None:
    state = JobState()
    first = state.append_urls([f"{BASE}1", f"{BASE}2", f"{BASE}1"])
    second = state.append_urls([f"{BASE}2", f"{BASE}3"])

    assert [ref.url for ref in first] == [f"{BASE}1", f"{BASE}2"]
    assert [ref.url for ref in second] == [f"{BASE}3"]
    assert len(state.property_urls) == 3


@pytest.mark.parametrize(
    "batch_index, expected",
    [
        (0, (0, 2, 1, 3)),
        (1, (2, 4, 2, 3)),
        (2, (4, 5, 3, 3)),
        (3, (6, 6, 4, 3)),
    ],
)
def test_batch_window_bounds(batch_index: int, expected: tuple) -> None:
    state = _state_with_urls(5)
    state.current_batch_index = batch_index

    window = state.batch_window()

    assert (window.start, window.end, window.current_batch, window.total_batches) == expected
    assert window.is_empty is (batch_index == 3)


def test_set_record_rejects_out_of_range_index() -> None:
    state = _state_with_urls(2)
    with pytest.raises(InvalidIndex):
        state.set_record(2, PropertyRecord.placeholder(f"{BASE}9"))
    with pytest.raises(InvalidIndex):
        state.set_record(-1, PropertyRecord.placeholder(f"{BASE}9"))


def test_statistics_switch_from_pages_to_items() -> None:
    state = _state_with_urls(3)
    state.current_page, state.end_page = 2, 5
    state.set_record(0, PropertyRecord.success(f"{BASE}0", {"address": "A"}))
    state.set_record(1, PropertyRecord.failure(f"{BASE}1", "boom", attempts=1))
    state.add_error("detail", "boom", property_index=1)

    collecting = state.statistics()
    assert collecting["progress"] == {"current": 2, "total": 5}

    state.url_collection_complete = True
    stats = state.statistics()
    assert stats == {
        "totalUrls": 3,
        "scrapedCount": 2,
        "successCount": 1,
        "errorCount": 1,
        "progress": {"current": 2, "total": 3},
    }


def test_failure_keeps_previous_fields() -> None:
    previous = PropertyRecord.success(f"{BASE}0", {"address": "1 Main St", "price": "$5"})

    record = PropertyRecord.failure(f"{BASE}0", "Rate limit detected", attempts=4, previous=previous)

    assert record.scrape_status is ScrapeStatus.ERROR
    assert record.address == "1 Main St"
    assert record.price == "$5"
    assert record.scrape_attempts == 4
    assert record.last_attempt is not None
    assert record.to_dict()["error"] == "Rate limit detected"


def test_success_prefers_collected_url_over_page_url() -> None:
    record = PropertyRecord.success(
        f"{BASE}0",
        {"url": "https://www.realestate.com.au/redirected", "address": "  2 High St  ", "bedrooms": 3},
    )

    assert record.url == f"{BASE}0"
    assert record.address == "2 High St"
    assert record.bedrooms == "3"


def test_ensure_complete_records_fills_gaps_only() -> None:
    state = _state_with_urls(3)
    state.set_record(1, PropertyRecord.success(f"{BASE}1", {}))

    added = state.ensure_complete_records()

    assert added == 2
    assert state.scraped_data[0].scrape_status is ScrapeStatus.NOT_SCRAPED
    assert state.scraped_data[1].scrape_status is ScrapeStatus.SUCCESS
    assert [r.url for r in state.ordered_records()] == [f"{BASE}0", f"{BASE}1", f"{BASE}2"]


def test_compact_drops_orphaned_records() -> None:
    state = _state_with_urls(2)
    state.scraped_data[0] = PropertyRecord.success(f"{BASE}0", {})
    state.scraped_data[7] = PropertyRecord.success(f"{BASE}7", {})

    state.compact()

    assert list(state.scraped_data) == [0]


@pytest.mark.parametrize(
    "value, expected",
    [
        (PropertyRef(url=f"{BASE}1"), f"{BASE}1"),
        (PropertyRecord(url=f"{BASE}2"), f"{BASE}2"),
        ({"url": f" {BASE}3 "}, f"{BASE}3"),
        (f" {BASE}4\n", f"{BASE}4"),
        (None, ""),
    ],
)
def test_property_url_accessor(value, expected: str) -> None:
    assert property_url(value) == expected
