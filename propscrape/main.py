from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response, jsonify, request, send_file

from propscrape.scraper import config
from propscrape.scraper.config_validation import validate_runtime_config
from propscrape.scraper.errors import NoData
from propscrape.scraper.healthcheck import run_health_checks
from propscrape.scraper.logging_utils import _scraper_event
from propscrape.scraper.run import ScrapeController
from propscrape.scraper.utils import ensure_dirs, get_current_log_path, log_line

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

# Initialise storage paths on import so WSGI entrypoints also have the
# expected environment ready.
ensure_dirs()
app.config["SCRAPE_CONTROLLER"] = ScrapeController()


def _controller() -> ScrapeController:
    return app.config["SCRAPE_CONTROLLER"]


def _payload() -> dict[str, Any]:
    """Accept JSON bodies and classic form posts alike."""

    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@app.get("/")
def index() -> Response:
    """Describe the API and the current job."""

    return jsonify(
        {
            "ok": True,
            "default_url": config.DEFAULT_LISTING_URL,
            "default_delay": config.DEFAULT_PAGE_DELAY_SECONDS,
            "log_file": str(get_current_log_path()),
            "status": _controller().status(),
        }
    )


@app.post("/api/scrape/start")
def start_scrape() -> Response:
    """Start a scrape (or resume the persisted one) on a background thread."""

    data = _payload()
    start_page = _as_int(data.get("startPage"), 1)
    end_page = _as_int(data.get("endPage"), start_page)
    delay = _as_float(data.get("delay"), config.DEFAULT_PAGE_DELAY_SECONDS)
    url = str(data.get("url") or config.DEFAULT_LISTING_URL).strip()
    resume = str(data.get("resume", "")).strip().lower() in {"1", "true", "yes", "on"}

    try:
        validate_runtime_config("ui", mode="resume" if resume else "fresh")
    except ValueError as exc:
        return jsonify({"ok": False, "error": "config_invalid", "details": str(exc)}), 500

    try:
        started = _controller().start(start_page, end_page, delay, url, resume=resume)
    except ValueError as exc:
        return jsonify({"ok": False, "error": "invalid_params", "details": str(exc)}), 400

    if not started:
        return jsonify({"ok": False, "error": "already_running"}), 409

    _scraper_event(
        "state",
        phase="trigger",
        trigger="ui",
        start_page=start_page,
        end_page=end_page,
        resume=resume,
    )
    return jsonify({"ok": True, "status": _controller().status()}), 202


@app.post("/api/scrape/stop")
def stop_scrape() -> Response:
    stopped = _controller().stop()
    return jsonify({"ok": True, "stopping": stopped})


@app.get("/api/scrape/status")
def scrape_status() -> Response:
    return jsonify(_controller().status())


@app.get("/api/errors")
def api_errors() -> Response:
    limit = max(0, _as_int(request.args.get("limit"), 50))
    return jsonify({"ok": True, "errors": _controller().errors(limit)})


@app.get("/api/events")
def api_events() -> Response:
    """Poll events published after sequence number ``since``."""

    since = max(0, _as_int(request.args.get("since"), 0))
    events = _controller().events
    return jsonify({"ok": True, "last_seq": events.last_seq, "events": events.since(since)})


@app.post("/api/reset")
def reset_view() -> Response:
    try:
        _controller().reset()
    except RuntimeError as exc:
        return jsonify({"ok": False, "error": "busy", "details": str(exc)}), 409
    return jsonify({"ok": True})


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem, and state."""

    result = run_health_checks(entrypoint="ui")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/export/csv")
def export_csv() -> Response:
    """Provide the scraped records as a timestamped CSV download."""

    try:
        path = _controller().download_export()
    except NoData:
        return jsonify({"ok": False, "error": "nothing to export"}), 404
    except OSError as exc:
        log_line(f"[EXPORT][ERROR] CSV export failed: {exc}")
        return jsonify({"ok": False, "error": "export_failed", "details": str(exc)}), 500
    return send_file(path, as_attachment=True, download_name=path.name, mimetype="text/csv")


@app.get("/export/xlsx")
def export_xlsx() -> Response:
    try:
        path = _controller().export_excel()
    except NoData:
        return jsonify({"ok": False, "error": "nothing to export"}), 404
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


if __name__ == "__main__":
    # Direct invocation is primarily for local development; directories are
    # initialised above during module import.
    app.run(host="0.0.0.0", port=8080)
