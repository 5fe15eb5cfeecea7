from __future__ import annotations

"""CLI helper for printing the persisted job status and exporting CSV."""

import argparse
from typing import Sequence

from .errors import NoData
from .export_csv import write_csv_export
from .state import StateStore


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the status CLI."""

    parser = argparse.ArgumentParser(
        description="Show progress of the persisted scraping job.",
    )
    parser.add_argument(
        "--errors",
        type=int,
        default=0,
        metavar="N",
        help="Also print the last N error entries.",
    )
    parser.add_argument(
        "--export-csv",
        metavar="DIR",
        help="Write a CSV export of the current records into DIR.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the status CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.errors < 0:
        parser.error("--errors must be non-negative")

    state = StateStore().load()
    stats = state.statistics()
    window = state.batch_window()

    print(f"Pages {state.start_page}-{state.end_page}, current page {state.current_page}")
    print(f"  url collection complete: {state.url_collection_complete}")
    print(f"  batch: {min(window.current_batch, window.total_batches)}/{window.total_batches}")
    for key in ("totalUrls", "scrapedCount", "successCount", "errorCount"):
        print(f"  {key}: {stats[key]}")
    progress = stats["progress"]
    print(f"  progress: {progress['current']}/{progress['total']}")
    if state.partial_scrape:
        print("  partial: True")

    if args.errors and state.errors:
        print("\nRecent errors:")
        for entry in state.errors[-args.errors:]:
            where = entry.url or (f"page {entry.page}" if entry.page is not None else entry.phase)
            print(f"  [{entry.code or entry.phase}] {where}: {entry.error}")

    if args.export_csv:
        try:
            path = write_csv_export(state, args.export_csv)
        except NoData:
            print("\nNothing to export")
            return 1
        print(f"\nExported {path}")

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
