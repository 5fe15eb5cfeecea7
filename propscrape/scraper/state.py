"""Persistence for the scraping job state.

The whole :class:`JobState` is the unit of durability: every save rewrites
the file through a temp file and an atomic replace, so readers in other
threads (status, export) always see a complete state.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from . import config
from .errors import PersistenceFailure
from .logging_utils import _scraper_event
from .models import JobState
from .utils import log_line, write_json_atomic


class StateStore:
    """Load, save and reset the persisted :class:`JobState`."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else None

    @property
    def path(self) -> Path:
        return self._path if self._path is not None else config.STATE_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> JobState:
        """Return the persisted state, or defaults when missing or invalid."""

        if not self.path.exists():
            return JobState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log_line(f"[STATE] Failed to read {self.path}: {exc}; using fresh state")
            _scraper_event("state", phase="load", kind="unreadable", error=str(exc))
            return JobState()

        if not JobState.is_valid_shape(raw):
            log_line("[STATE] Invalid state structure found, using fresh state")
            _scraper_event("state", phase="load", kind="invalid_shape")
            return JobState()

        state = JobState.from_dict(raw)
        log_line(
            f"[STATE] Loaded state with {len(state.property_urls)} URLs "
            f"and {len(state.scraped_data)} records"
        )
        return state

    def save(self, state: JobState, *, strict: bool = False) -> bool:
        """Write the entire state; failures are logged, or raised when ``strict``."""

        try:
            write_json_atomic(self.path, state.to_dict())
            return True
        except (OSError, TypeError, ValueError) as exc:
            log_line(f"[STATE][ERROR] Failed to save state to {self.path}: {exc}")
            _scraper_event("error", phase="persist", error=str(exc), path=str(self.path))
            if strict:
                raise PersistenceFailure(str(exc)) from exc
            return False

    def clear(self) -> None:
        """Remove the backing file if it exists."""

        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def reset(self, **overrides: Any) -> JobState:
        """Clear storage and persist defaults merged with ``overrides``."""

        self.clear()
        state = JobState(**overrides)
        self.save(state)
        _scraper_event("state", phase="reset", overrides=sorted(overrides))
        return state


__all__ = ["StateStore"]
