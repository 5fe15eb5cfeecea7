"""Configuration constants for the property listing scraper."""
from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlsplit

DATA_DIR: Path = Path(os.getenv("PROPSCRAPE_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
STATE_FILE: Path = DATA_DIR / "scraping_state.json"
EXPORTS_DIR: Path = DATA_DIR / "exports"
EXPORTS_KEEP_MAX: int = int(os.getenv("PROPSCRAPE_EXPORTS_KEEP_MAX", "5"))

TARGET_DOMAIN: str = os.getenv("PROPSCRAPE_TARGET_DOMAIN", "realestate.com.au")
TARGET_BASE_URL: str = f"https://www.{TARGET_DOMAIN}"
DEFAULT_LISTING_URL: str = f"{TARGET_BASE_URL}/buy/in-melbourne,+vic/list-1"

# Session/analytics cookies cleared by name before the full domain sweep.
SESSION_COOKIE_NAMES: tuple[str, ...] = (
    "_gcl_au", "_gid", "_ga", "AMCVS_", "AMCV_", "s_cc", "s_sq",
    "mbox", "RT", "_fbp", "reauid", "reauids", "visid_incap", "incap_ses",
    "nlbi_", "utag_main", "__gads", "IDE", "_gat",
)

BATCH_SIZE: int = int(os.getenv("PROPSCRAPE_BATCH_SIZE", "60"))
MIN_FREE_MB: int = int(os.getenv("MIN_FREE_MB", "50"))


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _parse_seconds(env_var: str, default: float) -> float:
    """Parse a non-negative float delay from the environment."""

    try:
        value = float(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(0.0, value)


# Playwright timeouts (seconds)
# Load-completion deadline for a single navigation.
NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("PROPSCRAPE_NAV_TIMEOUT_SECONDS", 30)
# Response deadline for the injected extractor before the fallback path runs.
MESSAGE_TIMEOUT_SECONDS: int = _parse_timeout_seconds("PROPSCRAPE_MESSAGE_TIMEOUT_SECONDS", 5)

# Settle delays after the load event, for client-side rendering.
LISTING_SETTLE_SECONDS: float = _parse_seconds("PROPSCRAPE_LISTING_SETTLE_SECONDS", 2.0)
DETAIL_SETTLE_SECONDS: float = _parse_seconds("PROPSCRAPE_DETAIL_SETTLE_SECONDS", 3.0)

# Pacing
DEFAULT_PAGE_DELAY_SECONDS: float = _parse_seconds("PROPSCRAPE_PAGE_DELAY_SECONDS", 2.0)
PAGE_RETRY_DELAY_SECONDS: float = _parse_seconds("PROPSCRAPE_PAGE_RETRY_DELAY_SECONDS", 5.0)
ITEM_DELAY_SECONDS: float = _parse_seconds("PROPSCRAPE_ITEM_DELAY_SECONDS", 1.0)
BATCH_JITTER_SECONDS: float = _parse_seconds("PROPSCRAPE_BATCH_JITTER_SECONDS", 5.0)

# Rate-limit mitigation and backoff
MITIGATION_DELAY_MIN_SECONDS: float = _parse_seconds("PROPSCRAPE_MITIGATION_DELAY_MIN", 2.0)
MITIGATION_DELAY_MAX_SECONDS: float = _parse_seconds("PROPSCRAPE_MITIGATION_DELAY_MAX", 5.0)
MAX_RATE_LIMIT_RETRIES: int = int(os.getenv("PROPSCRAPE_MAX_RATE_LIMIT_RETRIES", "3"))
BACKOFF_BASE_SECONDS: float = _parse_seconds("PROPSCRAPE_BACKOFF_BASE_SECONDS", 30.0)
BACKOFF_JITTER_SECONDS: float = _parse_seconds("PROPSCRAPE_BACKOFF_JITTER_SECONDS", 10.0)
BACKOFF_CAP_SECONDS: float = _parse_seconds("PROPSCRAPE_BACKOFF_CAP_SECONDS", 300.0)

# Mitigation policy: both on reproduces "once per batch plus once per retry".
MITIGATE_PER_BATCH: bool = os.getenv("PROPSCRAPE_MITIGATE_PER_BATCH", "1").strip().lower() not in {
    "0",
    "false",
}
MITIGATE_PER_RETRY: bool = os.getenv("PROPSCRAPE_MITIGATE_PER_RETRY", "1").strip().lower() not in {
    "0",
    "false",
}

# Stall watchdog
WATCHDOG_INTERVAL_SECONDS: float = _parse_seconds("PROPSCRAPE_WATCHDOG_INTERVAL_SECONDS", 300.0)
STALL_THRESHOLD_SECONDS: float = _parse_seconds("PROPSCRAPE_STALL_THRESHOLD_SECONDS", 600.0)

HEADLESS: bool = os.getenv("PROPSCRAPE_HEADLESS", "1").strip().lower() not in {"0", "false"}

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
)

COMMON_HEADERS: dict[str, str] = {
    "Accept-Language": "en-AU,en;q=0.9",
}

EVENT_HISTORY_MAX: int = int(os.getenv("PROPSCRAPE_EVENT_HISTORY_MAX", "500"))


def is_target_url(url: str) -> bool:
    """Return ``True`` when the host of ``url`` is the target domain or a subdomain of it."""

    try:
        host = (urlsplit((url or "").strip()).hostname or "").lower()
    except ValueError:
        return False
    domain = TARGET_DOMAIN.strip().lstrip(".").lower()
    return bool(domain) and (host == domain or host.endswith("." + domain))
