from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from .utils import log_line


def _format_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    elif isinstance(value, Path):
        value = str(value)
    elif isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".") or "0"
    return repr(value)


def _scraper_event(label: str = "", *, phase: Any = None, **fields: Any) -> None:
    """Log one ``[SCRAPER][LABEL] key=value`` line for the scrape job.

    ``label`` is the event family (``nav``, ``extract``, ``state``, ``error``).
    Without a label the ``phase`` names the line instead. Orchestrator phases
    and other enums are logged by value, paths as plain strings and floats
    (delays, backoff) with millisecond precision.
    """

    try:
        if isinstance(phase, Enum):
            phase = phase.value
        event_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{key}={_format_value(fields[key])}" for key in sorted(fields))
        log_line(f"[SCRAPER][{str(event_label).upper()}] {payload}")
    except Exception:
        # A failed log line is dropped; the scrape carries on.
        return


__all__ = ["_scraper_event"]
