#!/usr/bin/env python3
"""Import wellness exports into the local journal store.

Prints the preview, asks for confirmation, then prints the import summary.

Usage:
    python scripts/import_files.py garmin steps.csv calories.csv sleep.csv
    python scripts/import_files.py health-connect "Health Connect.zip" --since 2024-01-01
    python scripts/import_files.py health-connect backup.db --yes
    python scripts/import_files.py cleanup --retention-days 75
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

from shared.config import settings
from shared.database import async_session_factory, engine, init_database
from shared.exceptions import ProblemDetailError, StorageFailureError
from shared.logging import configure_logging
from wellness.domain.models import ImportPreview, ImportSummary
from wellness.pipeline import ImportOrchestrator
from wellness.repository import JournalRepository
from wellness.samples import IntradaySampleManager

# ── Output ───────────────────────────────────────────────────────


def _print_preview(preview: ImportPreview) -> None:
    print(f"Source:      {preview.source.value}")
    if preview.first_date:
        span = f"{preview.first_date} .. {preview.last_date}"
        print(f"Date range:  {span} ({preview.total_days} days)")
    for metric, days in sorted(preview.metric_days.items()):
        print(f"  {metric:<14} {days:>5} days")
    if preview.weight_count:
        print(f"  {'weights':<14} {preview.weight_count:>5}")
    for kind, days in preview.intraday_days.items():
        print(f"  {kind.value + ' samples':<14} {days:>5} days")
    _print_warnings(preview.warnings)


def _print_summary(summary: ImportSummary) -> None:
    status = "CANCELLED" if summary.cancelled else "DONE"
    print(
        f"[{status}] added={summary.added_count} updated={summary.updated_count} "
        f"skipped={summary.skipped_count} failed={summary.failed_count}"
    )
    for kind, days in summary.intraday_days_stored.items():
        print(f"  stored {days} {kind.value} day(s)")
    for kind, days in summary.intraday_days_purged.items():
        print(f"  purged {days} {kind.value} day(s)")
    _print_warnings(summary.warnings)


def _print_warnings(warnings: list[str], limit: int = 20) -> None:
    if not warnings:
        return
    print(f"Warnings ({len(warnings)}):")
    for warning in warnings[:limit]:
        print(f"  - {warning}")
    if len(warnings) > limit:
        print(f"  ... and {len(warnings) - limit} more")


def _confirmed(assume_yes: bool) -> bool:
    if assume_yes:
        return True
    answer = input("Import these records? [y/N] ").strip().lower()
    return answer in ("y", "yes")


# ── Commands ─────────────────────────────────────────────────────


async def _run_import(args: argparse.Namespace) -> int:
    async with async_session_factory() as session:
        orchestrator = ImportOrchestrator(session)
        if args.command == "garmin":
            files = [(Path(p).name, Path(p).read_bytes()) for p in args.files]
            preview = await orchestrator.parse_garmin(files)
        else:
            preview = await orchestrator.parse_snapshot(args.file, since=args.since)

        _print_preview(preview)
        if not _confirmed(args.yes):
            orchestrator.abandon()
            print("Import abandoned; nothing was written.")
            return 1

        try:
            summary = await orchestrator.confirm()
        except StorageFailureError as exc:
            print(f"Storage failure: {exc.detail}", file=sys.stderr)
            if exc.summary is not None:
                _print_summary(exc.summary)
            return 2

    _print_summary(summary)
    return 0


async def _run_cleanup(args: argparse.Namespace) -> int:
    async with async_session_factory() as session:
        manager = IntradaySampleManager(JournalRepository(session))
        purged = await manager.cleanup_all(retention_days=args.retention_days)
    for kind, days in purged.items():
        print(f"  purged {days} {kind.value} day(s)")
    return 0


async def _main(args: argparse.Namespace) -> int:
    if settings.auto_create_schema:
        await init_database()
    try:
        if args.command == "cleanup":
            return await _run_cleanup(args)
        return await _run_import(args)
    except ProblemDetailError as exc:
        print(f"{exc.title}: {exc.detail}", file=sys.stderr)
        for warning in getattr(exc, "warnings", [])[:20]:
            print(f"  - {warning}", file=sys.stderr)
        return 2
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Import wellness exports into the journal")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    garmin = sub.add_parser("garmin", help="Import Garmin Connect CSV exports")
    garmin.add_argument("files", nargs="+", help="One or more CSV files")
    garmin.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    hc = sub.add_parser("health-connect", help="Import a Health Connect backup (db, zip, gz, tar)")
    hc.add_argument("file", help="Backup file")
    hc.add_argument(
        "--since", type=date.fromisoformat, default=None, help="Ignore data before YYYY-MM-DD"
    )
    hc.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    cleanup = sub.add_parser("cleanup", help="Purge intraday samples past the retention window")
    cleanup.add_argument("--retention-days", type=int, default=settings.sample_retention_days)

    args = parser.parse_args()
    configure_logging(json_output=False, level=logging.DEBUG if args.verbose else logging.WARNING)
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
