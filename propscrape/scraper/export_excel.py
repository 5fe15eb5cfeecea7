"""Excel export helpers for scraped property records."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from . import config
from .errors import NoData
from .export_csv import clean_feature_values
from .logging_utils import _scraper_event
from .models import PropertyRecord
from .utils import file_timestamp, log_line


def prune_old_exports(exports_dir: Optional[Path] = None, keep: Optional[int] = None) -> None:
    exports_dir = Path(exports_dir) if exports_dir is not None else config.EXPORTS_DIR
    keep = config.EXPORTS_KEEP_MAX if keep is None else keep
    if not exports_dir.is_dir():
        return
    files = sorted(
        [os.path.join(exports_dir, p) for p in os.listdir(exports_dir) if p.endswith(".xlsx")]
    )
    while len(files) > keep:
        old = files.pop(0)
        try:
            os.remove(old)
        except OSError:
            continue


def _flatten(record: PropertyRecord) -> dict:
    """One spreadsheet row; feature lists become ``Feature: <category>`` columns."""

    row = record.to_dict()
    features = row.pop("features", {}) or {}
    for category, values in features.items():
        row[f"Feature: {category}"] = "; ".join(clean_feature_values(values))
    return row


def export_records_to_excel(
    records: Iterable[PropertyRecord], dest_path: Optional[str] = None
) -> str:
    """Create an Excel workbook with All/Success/Errors/Summary_Status sheets."""

    rows = [_flatten(record) for record in records if record is not None]
    if not rows:
        raise NoData("No property data to export")

    df = pd.DataFrame(rows)
    success = df[df["scrapeStatus"] == "success"].copy()
    errors = df[df["scrapeStatus"] == "error"].copy()
    summary_status = (
        df.groupby("scrapeStatus").size().reset_index(name="count").sort_values("count", ascending=False)
    )

    config.EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
    if not dest_path:
        basename = f"realestate_properties_{file_timestamp()}.xlsx"
        dest_path = os.path.join(config.EXPORTS_DIR, basename)

    with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="All")
        success.to_excel(writer, index=False, sheet_name="Success")
        errors.to_excel(writer, index=False, sheet_name="Errors")
        summary_status.to_excel(writer, index=False, sheet_name="Summary_Status")

    log_line(f"[EXPORT] Wrote Excel export {dest_path}")
    _scraper_event("export", format="xlsx", path=str(dest_path), rows=len(rows))
    prune_old_exports()
    return dest_path


__all__ = ["export_records_to_excel", "prune_old_exports"]
