from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from . import config
from .config_validation import validate_runtime_config
from .logging_utils import _scraper_event
from .models import JobState
from .utils import disk_has_room, ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def _check_state_file() -> dict[str, Any]:
    path = config.STATE_FILE
    if not path.exists():
        return {"ok": True, "path": str(path), "present": False}
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not JobState.is_valid_shape(raw):
        return {"ok": False, "path": str(path), "error": "invalid state structure"}
    return {
        "ok": True,
        "path": str(path),
        "present": True,
        "urls": len(raw.get("propertyUrls", [])),
    }


def run_health_checks(entrypoint: str = "cli") -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "cli", mode=None)
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    ensure_dirs()
    fs_ok = disk_has_room(config.MIN_FREE_MB, config.DATA_DIR)
    checks["filesystem"] = {
        "ok": fs_ok,
        "data_dir": str(config.DATA_DIR),
        "min_free_mb": config.MIN_FREE_MB,
    }

    try:
        checks["state"] = _check_state_file()
    except Exception as exc:  # noqa: BLE001
        checks["state"] = {"ok": False, "error": str(exc)}

    # An unreadable state file is recoverable (load() falls back to defaults),
    # so only the CLI treats it as a failure.
    strict_state = entrypoint == "cli"
    overall_ok = all(
        check.get("ok", False)
        for name, check in checks.items()
        if strict_state or name != "state"
    )

    _scraper_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
