"""Progress/status events published by the scraping job."""

from __future__ import annotations

import itertools
import threading
import time
import uuid
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional

from . import config
from .utils import log_line, now_iso

EVENT_TYPES = ("progress", "phase", "status", "error", "complete", "export_ready")

Listener = Callable[[Dict[str, Any]], Any]


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


class EventLog:
    """Fan events out to listeners and keep a bounded, sequenced history.

    Listeners are fire-and-forget: a failing listener is logged and skipped.
    Pollers use :meth:`since` with the last sequence number they saw.
    """

    def __init__(self, max_history: Optional[int] = None) -> None:
        self.run_id = f"{_ts()}_{uuid.uuid4().hex[:8]}"
        self._history: Deque[Dict[str, Any]] = deque(maxlen=max_history or config.EVENT_HISTORY_MAX)
        self._listeners: List[Listener] = []
        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self.summary: Dict[str, int] = defaultdict(int)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event_type: str, **payload: Any) -> Dict[str, Any]:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        with self._lock:
            event = {
                "seq": next(self._seq),
                "type": event_type,
                "timestamp": now_iso(),
                **payload,
            }
            self._history.append(event)
            self.summary[f"count_{event_type}"] += 1
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                log_line(f"[EVENTS] Listener failed for {event_type}: {exc}")
        return event

    def since(self, seq: int = 0) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(event) for event in self._history if event["seq"] > seq]

    def history(self) -> List[Dict[str, Any]]:
        return self.since(0)

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._history[-1]["seq"] if self._history else 0


__all__ = ["EventLog", "EVENT_TYPES"]
