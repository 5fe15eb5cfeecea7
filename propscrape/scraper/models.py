"""Job state and property record types shared by the scraper components.

Python attributes are snake_case; ``to_dict``/``from_dict`` translate to the
camelCase keys used by the persisted state file and the CSV export.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from . import config
from .errors import InvalidIndex
from .utils import now_iso


class ScrapeStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    NOT_SCRAPED = "not_scraped"


def _safe_status(value: Any) -> ScrapeStatus:
    try:
        return ScrapeStatus(value)
    except ValueError:
        return ScrapeStatus.NOT_SCRAPED


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _features(value: Any) -> Dict[str, List[str]]:
    if not isinstance(value, Mapping):
        return {}
    features: Dict[str, List[str]] = {}
    for category, items in value.items():
        if not isinstance(items, (list, tuple)):
            continue
        features[str(category)] = [_text(item) for item in items if _text(item)]
    return features


@dataclass
class PropertyRef:
    """A collected detail-page URL; its list position is its permanent index."""

    url: str
    scrape_attempts: int = 0
    added_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "scrapeAttempts": self.scrape_attempts,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_value(cls, value: Any) -> Optional["PropertyRef"]:
        """Build a ref from a stored dict, a legacy bare URL string, or a ref."""

        if isinstance(value, PropertyRef):
            return value
        if isinstance(value, str):
            url = value.strip()
            return cls(url=url) if url else None
        if isinstance(value, Mapping):
            url = _text(value.get("url"))
            if not url:
                return None
            return cls(
                url=url,
                scrape_attempts=_int(value.get("scrapeAttempts")),
                added_at=_text(value.get("addedAt")) or now_iso(),
            )
        return None


def property_url(value: Any) -> str:
    """Return the URL of a ref, record, mapping, or bare string."""

    if isinstance(value, (PropertyRef, PropertyRecord)):
        return value.url
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        return _text(value.get("url"))
    return ""


DETAIL_FIELDS: Dict[str, str] = {
    "address": "address",
    "price": "price",
    "description": "description",
    "bedrooms": "bedrooms",
    "bathrooms": "bathrooms",
    "carspaces": "carspaces",
    "propertyType": "property_type",
    "agent": "agent",
    "mainImage": "main_image",
}


@dataclass
class PropertyRecord:
    url: str
    address: str = ""
    price: str = ""
    description: str = ""
    bedrooms: str = ""
    bathrooms: str = ""
    carspaces: str = ""
    property_type: str = ""
    agent: str = ""
    main_image: str = ""
    features: Dict[str, List[str]] = field(default_factory=dict)
    scrape_status: ScrapeStatus = ScrapeStatus.NOT_SCRAPED
    error: Optional[str] = None
    scraped_at: str = field(default_factory=now_iso)
    scrape_attempts: int = 0
    last_attempt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": self.url}
        for key, attr in DETAIL_FIELDS.items():
            payload[key] = getattr(self, attr)
        payload["features"] = {k: list(v) for k, v in self.features.items()}
        payload["scrapeStatus"] = self.scrape_status.value
        if self.error is not None:
            payload["error"] = self.error
        payload["scrapedAt"] = self.scraped_at
        payload["scrapeAttempts"] = self.scrape_attempts
        if self.last_attempt is not None:
            payload["lastAttempt"] = self.last_attempt
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PropertyRecord":
        kwargs = {attr: _text(data.get(key)) for key, attr in DETAIL_FIELDS.items()}
        error = data.get("error")
        last_attempt = data.get("lastAttempt")
        return cls(
            url=_text(data.get("url")),
            features=_features(data.get("features")),
            scrape_status=_safe_status(data.get("scrapeStatus")),
            error=_text(error) if error is not None else None,
            scraped_at=_text(data.get("scrapedAt")) or now_iso(),
            scrape_attempts=_int(data.get("scrapeAttempts")),
            last_attempt=_text(last_attempt) if last_attempt is not None else None,
            **kwargs,
        )

    @classmethod
    def success(cls, url: str, details: Mapping[str, Any], *, attempts: int = 1) -> "PropertyRecord":
        """Build a success record; the collected URL wins over the page URL."""

        kwargs = {attr: _text(details.get(key)) for key, attr in DETAIL_FIELDS.items()}
        return cls(
            url=url,
            features=_features(details.get("features")),
            scrape_status=ScrapeStatus.SUCCESS,
            scrape_attempts=attempts,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        url: str,
        error: str,
        *,
        attempts: int,
        previous: Optional["PropertyRecord"] = None,
    ) -> "PropertyRecord":
        """Build an error record, keeping any fields already known for the URL."""

        stamp = now_iso()
        if previous is not None:
            kwargs = {attr: getattr(previous, attr) for attr in DETAIL_FIELDS.values()}
            features = dict(previous.features)
        else:
            kwargs = {}
            features = {}
        return cls(
            url=url or (previous.url if previous else ""),
            features=features,
            scrape_status=ScrapeStatus.ERROR,
            error=error,
            scraped_at=stamp,
            scrape_attempts=attempts,
            last_attempt=stamp,
            **kwargs,
        )

    @classmethod
    def placeholder(cls, url: str, status: ScrapeStatus = ScrapeStatus.NOT_SCRAPED) -> "PropertyRecord":
        return cls(url=url, scrape_status=status)


@dataclass
class ErrorEntry:
    phase: str
    error: str
    timestamp: str = field(default_factory=now_iso)
    page: Optional[int] = None
    property_index: Optional[int] = None
    url: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"phase": self.phase}
        if self.page is not None:
            payload["page"] = self.page
        if self.property_index is not None:
            payload["propertyIndex"] = self.property_index
        if self.url:
            payload["url"] = self.url
        payload["error"] = self.error
        if self.code:
            payload["code"] = self.code
        payload["timestamp"] = self.timestamp
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> "ErrorEntry":
        if not isinstance(data, Mapping):
            return cls(phase="unknown", error=_text(data))
        page = data.get("page")
        index = data.get("propertyIndex")
        return cls(
            phase=_text(data.get("phase")) or "unknown",
            error=_text(data.get("error")),
            timestamp=_text(data.get("timestamp")) or now_iso(),
            page=_int(page) if page is not None else None,
            property_index=_int(index) if index is not None else None,
            url=_text(data.get("url")) or None,
            code=_text(data.get("code")) or None,
        )


@dataclass(frozen=True)
class BatchWindow:
    start: int
    end: int
    current_batch: int
    total_batches: int

    @property
    def indices(self) -> range:
        return range(self.start, self.end)

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class JobState:
    current_page: int = 1
    end_page: int = 1
    start_page: int = 1
    url_collection_complete: bool = False
    property_urls: List[PropertyRef] = field(default_factory=list)
    scraped_data: Dict[int, PropertyRecord] = field(default_factory=dict)
    current_batch_index: int = 0
    batch_size: int = field(default_factory=lambda: config.BATCH_SIZE)
    original_page_url: str = ""
    errors: List[ErrorEntry] = field(default_factory=list)
    last_url_collection_time: Optional[float] = None
    delay: float = field(default_factory=lambda: config.DEFAULT_PAGE_DELAY_SECONDS)
    partial_scrape: bool = False

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPage": self.current_page,
            "endPage": self.end_page,
            "startPage": self.start_page,
            "urlCollectionComplete": self.url_collection_complete,
            "propertyUrls": [ref.to_dict() for ref in self.property_urls],
            "scrapedData": {
                str(index): record.to_dict()
                for index, record in sorted(self.scraped_data.items())
            },
            "currentBatchIndex": self.current_batch_index,
            "batchSize": self.batch_size,
            "originalPageUrl": self.original_page_url,
            "errors": [entry.to_dict() for entry in self.errors],
            "lastUrlCollectionTime": self.last_url_collection_time,
            "delay": self.delay,
            "partialScrape": self.partial_scrape,
        }

    @staticmethod
    def is_valid_shape(data: Any) -> bool:
        """Structural check applied before trusting a persisted state."""

        return (
            isinstance(data, Mapping)
            and isinstance(data.get("propertyUrls"), list)
            and isinstance(data.get("scrapedData"), (list, dict))
            and isinstance(data.get("errors"), list)
            and _is_number(data.get("currentPage"))
            and _is_number(data.get("endPage"))
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobState":
        refs = [
            ref
            for ref in (PropertyRef.from_value(item) for item in data.get("propertyUrls", []))
            if ref is not None
        ]

        raw_records = data.get("scrapedData") or {}
        if isinstance(raw_records, list):
            # Legacy layout: a sparse array with nulls at unscraped positions.
            pairs: Iterable = enumerate(raw_records)
        else:
            pairs = raw_records.items()
        records: Dict[int, PropertyRecord] = {}
        for key, value in pairs:
            if not isinstance(value, Mapping):
                continue
            index = _int(key, default=-1)
            if 0 <= index < len(refs):
                records[index] = PropertyRecord.from_dict(value)

        last_time = data.get("lastUrlCollectionTime")
        return cls(
            current_page=_int(data.get("currentPage"), 1),
            end_page=_int(data.get("endPage"), 1),
            start_page=_int(data.get("startPage"), _int(data.get("currentPage"), 1)),
            url_collection_complete=bool(data.get("urlCollectionComplete", False)),
            property_urls=refs,
            scraped_data=records,
            current_batch_index=max(0, _int(data.get("currentBatchIndex"))),
            batch_size=max(1, _int(data.get("batchSize"), config.BATCH_SIZE)),
            original_page_url=_text(data.get("originalPageUrl")),
            errors=[ErrorEntry.from_dict(item) for item in data.get("errors", [])],
            last_url_collection_time=float(last_time) if _is_number(last_time) else None,
            delay=float(data["delay"]) if _is_number(data.get("delay")) else config.DEFAULT_PAGE_DELAY_SECONDS,
            partial_scrape=bool(data.get("partialScrape", False)),
        )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def batch_window(self) -> BatchWindow:
        total = len(self.property_urls)
        start = self.current_batch_index * self.batch_size
        end = min(start + self.batch_size, total)
        return BatchWindow(
            start=start,
            end=max(start, end),
            current_batch=self.current_batch_index + 1,
            total_batches=math.ceil(total / self.batch_size) if total else 0,
        )

    def known_urls(self) -> Set[str]:
        return {ref.url for ref in self.property_urls}

    def completed_count(self) -> int:
        """Number of records that reached a terminal success/error status."""

        return sum(
            1
            for record in self.scraped_data.values()
            if record.scrape_status in (ScrapeStatus.SUCCESS, ScrapeStatus.ERROR)
        )

    def success_count(self) -> int:
        return sum(
            1 for record in self.scraped_data.values() if record.scrape_status is ScrapeStatus.SUCCESS
        )

    def record_error_count(self) -> int:
        return sum(
            1 for record in self.scraped_data.values() if record.scrape_status is ScrapeStatus.ERROR
        )

    def statistics(self) -> Dict[str, Any]:
        if self.url_collection_complete:
            progress = {"current": self.completed_count(), "total": len(self.property_urls)}
        else:
            progress = {"current": self.current_page, "total": self.end_page}
        return {
            "totalUrls": len(self.property_urls),
            "scrapedCount": len(self.scraped_data),
            "successCount": self.success_count(),
            "errorCount": len(self.errors),
            "progress": progress,
        }

    def ordered_records(self) -> List[PropertyRecord]:
        return [record for _, record in sorted(self.scraped_data.items())]

    # ------------------------------------------------------------------
    # Mutation helpers (single writer: the orchestrator)
    # ------------------------------------------------------------------

    def append_urls(self, urls: Iterable[str]) -> List[PropertyRef]:
        """Append unseen URLs in order and return the refs actually added."""

        seen = self.known_urls()
        added: List[PropertyRef] = []
        for url in urls:
            if url in seen:
                continue
            seen.add(url)
            ref = PropertyRef(url=url)
            self.property_urls.append(ref)
            added.append(ref)
        return added

    def set_record(self, index: int, record: PropertyRecord) -> None:
        if not 0 <= index < len(self.property_urls):
            raise InvalidIndex(f"Property index {index} outside 0..{len(self.property_urls) - 1}")
        self.scraped_data[index] = record

    def add_error(
        self,
        phase: str,
        error: str,
        *,
        page: Optional[int] = None,
        property_index: Optional[int] = None,
        url: Optional[str] = None,
        code: Optional[str] = None,
    ) -> ErrorEntry:
        entry = ErrorEntry(
            phase=phase,
            error=error,
            page=page,
            property_index=property_index,
            url=url,
            code=code,
        )
        self.errors.append(entry)
        return entry

    def compact(self) -> None:
        """Drop records whose index no longer maps onto ``property_urls``."""

        total = len(self.property_urls)
        self.scraped_data = {
            index: record
            for index, record in self.scraped_data.items()
            if record is not None and 0 <= index < total
        }

    def ensure_complete_records(self) -> int:
        """Give every collected URL a record; return how many were synthesised."""

        added = 0
        for index, ref in enumerate(self.property_urls):
            if index not in self.scraped_data:
                self.scraped_data[index] = PropertyRecord.placeholder(ref.url)
                added += 1
        return added


__all__ = [
    "ScrapeStatus",
    "PropertyRef",
    "PropertyRecord",
    "ErrorEntry",
    "BatchWindow",
    "JobState",
    "DETAIL_FIELDS",
    "property_url",
]
