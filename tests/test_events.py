from __future__ import annotations

import pytest

from propscrape.scraper.events import EventLog
from tests.test_state_store import _configure_temp_paths


@pytest.fixture(autouse=True)
def _temp_paths(tmp_path, monkeypatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)


def test_emit_sequences_and_polls_since() -> None:
    log = EventLog()
    log.emit("phase", phase="collecting_urls")
    log.emit("progress", stage="url_collection", current=1, total=3)
    log.emit("complete", partial=False)

    assert [e["seq"] for e in log.history()] == [1, 2, 3]
    assert [e["type"] for e in log.since(1)] == ["progress", "complete"]
    assert log.since(3) == []
    assert log.last_seq == 3
    assert log.summary["count_progress"] == 1


def test_history_is_bounded() -> None:
    log = EventLog(max_history=2)
    for page in range(5):
        log.emit("progress", current=page)

    assert [e["current"] for e in log.history()] == [3, 4]
    assert log.last_seq == 5


def test_listener_failures_do_not_block_others() -> None:
    log = EventLog()
    received: list[str] = []

    def _broken(event):
        raise RuntimeError("popup closed")

    log.subscribe(_broken)
    unsubscribe = log.subscribe(lambda event: received.append(event["type"]))

    log.emit("status", message="Collecting URLs from page 1...")
    unsubscribe()
    log.emit("status", message="ignored")

    assert received == ["status"]


def test_unknown_event_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventLog().emit("exportReady")
