"""CSV export of scraped property records."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from . import config
from .errors import NoData
from .logging_utils import _scraper_event
from .models import JobState, PropertyRecord
from .utils import file_timestamp, log_line

_DIGITS_ONLY_RE = re.compile(r"^\d+$")
_ROOM_COUNT_RE = re.compile(r"^\d+\s*(bed|bath|car|garage|park)", re.IGNORECASE)
_LINE_BREAK_RE = re.compile(r"\r?\n|\r")

RecordLike = Union[PropertyRecord, Mapping[str, Any]]


def clean_feature_values(features: Any) -> List[str]:
    """Dedupe feature strings and drop bare numbers and room counts."""

    if not isinstance(features, (list, tuple)):
        return []
    cleaned: List[str] = []
    for feature in dict.fromkeys(features):
        if not isinstance(feature, str):
            continue
        if _DIGITS_ONLY_RE.match(feature) or _ROOM_COUNT_RE.match(feature):
            continue
        cleaned.append(feature)
    return cleaned


def _format_scalar(key: str, value: Any) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    if key == "description":
        text = _LINE_BREAK_RE.sub(" ", text)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def _format_features(values: Any) -> str:
    joined = "; ".join(clean_feature_values(values))
    joined = _LINE_BREAK_RE.sub(" ", joined)
    return '"' + joined.replace('"', '""') + '"'


def _as_dict(record: RecordLike) -> Dict[str, Any]:
    if isinstance(record, PropertyRecord):
        return record.to_dict()
    return dict(record)


def to_csv(records: Iterable[RecordLike]) -> str:
    rows = [_as_dict(record) for record in records if record is not None]
    if not rows:
        raise NoData("No property data to export")

    headers: List[str] = []
    categories: List[str] = []
    for row in rows:
        for key in row:
            if key != "features" and key not in headers:
                headers.append(key)
        features = row.get("features")
        if isinstance(features, Mapping):
            for category in features:
                if category not in categories:
                    categories.append(category)

    lines = [",".join(headers + [f"Feature: {category}" for category in categories])]
    for row in rows:
        cells = [_format_scalar(key, row.get(key)) for key in headers]
        features = row.get("features") if isinstance(row.get("features"), Mapping) else {}
        for category in categories:
            cells.append(_format_features(features[category]) if category in features else "")
        lines.append(",".join(cells))
    return "\n".join(lines) + "\n"


def export_records(state: JobState) -> List[PropertyRecord]:
    """Records in URL order, with placeholders for URLs never written."""

    records = [
        state.scraped_data.get(index) or PropertyRecord.placeholder(ref.url)
        for index, ref in enumerate(state.property_urls)
    ]
    if not records:
        records = state.ordered_records()
    return records


def export_filename() -> str:
    return f"realestate_properties_{file_timestamp()}.csv"


def write_csv_export(state: JobState, dest_dir: Optional[Path] = None) -> Path:
    """Write the state's records as a UTF-8 CSV file and return its path."""

    records = export_records(state)
    content = to_csv(records)
    target_dir = Path(dest_dir) if dest_dir is not None else config.EXPORTS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / export_filename()
    path.write_text(content, encoding="utf-8")
    log_line(f"[EXPORT] Wrote CSV export {path}")
    _scraper_event("export", format="csv", path=str(path), rows=len(records))
    return path


__all__ = ["to_csv", "clean_feature_values", "export_records", "export_filename", "write_csv_export"]
