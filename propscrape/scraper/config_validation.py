from __future__ import annotations

from typing import Any, Literal

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: str | None
) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise ValueError(message)


def _clamp(field: str, adjusted: Any, reason: str, *, entrypoint: Entrypoint, mode: str | None) -> None:
    _scraper_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field,
        value=getattr(config, field),
        adjusted=adjusted,
        entrypoint=entrypoint,
        mode=mode,
    )
    log_line(f"[CONFIG] {field} {reason}; clamping to {adjusted}.")
    setattr(config, field, adjusted)


def validate_runtime_config(entrypoint: Entrypoint, *, mode: str | None = None) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Non-fatal adjustments (batch size, retry caps, delay bounds) are logged
    but do not raise.
    """

    if not config.TARGET_DOMAIN.strip():
        _raise_config_error(
            "PROPSCRAPE_TARGET_DOMAIN must not be empty.",
            entrypoint=entrypoint,
            error="target_domain_missing",
            mode=mode,
        )

    if config.MIN_FREE_MB < 0:
        _raise_config_error(
            "MIN_FREE_MB must be non-negative.",
            entrypoint=entrypoint,
            error="min_free_mb_invalid",
            mode=mode,
        )

    timeout_fields = [
        ("NAV_TIMEOUT_SECONDS", config.NAV_TIMEOUT_SECONDS),
        ("MESSAGE_TIMEOUT_SECONDS", config.MESSAGE_TIMEOUT_SECONDS),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                mode=mode,
            )

    if config.BATCH_SIZE < 1:
        _clamp("BATCH_SIZE", 1, "< 1", entrypoint=entrypoint, mode=mode)

    if config.MAX_RATE_LIMIT_RETRIES < 0:
        _clamp("MAX_RATE_LIMIT_RETRIES", 0, "< 0", entrypoint=entrypoint, mode=mode)

    if config.MITIGATION_DELAY_MAX_SECONDS < config.MITIGATION_DELAY_MIN_SECONDS:
        _clamp(
            "MITIGATION_DELAY_MAX_SECONDS",
            config.MITIGATION_DELAY_MIN_SECONDS,
            "below MITIGATION_DELAY_MIN_SECONDS",
            entrypoint=entrypoint,
            mode=mode,
        )

    if config.BACKOFF_CAP_SECONDS < config.BACKOFF_BASE_SECONDS:
        _clamp(
            "BACKOFF_CAP_SECONDS",
            config.BACKOFF_BASE_SECONDS,
            "below BACKOFF_BASE_SECONDS",
            entrypoint=entrypoint,
            mode=mode,
        )

    if config.EXPORTS_KEEP_MAX < 1:
        _clamp("EXPORTS_KEEP_MAX", 1, "< 1", entrypoint=entrypoint, mode=mode)

    if config.WATCHDOG_INTERVAL_SECONDS <= 0:
        _clamp("WATCHDOG_INTERVAL_SECONDS", 300.0, "must be positive", entrypoint=entrypoint, mode=mode)


__all__ = ["validate_runtime_config", "Entrypoint"]
