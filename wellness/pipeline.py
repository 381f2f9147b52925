"""Import orchestrator: parse → preview → confirm → merge → persist → clean up.

    IDLE → PARSING → PREVIEW_READY ─confirm→ NORMALIZING → MERGING
         → PERSISTING → CLEANING_UP → SUMMARIZED
    PREVIEW_READY ─abandon→ CANCELLED (nothing written)
    any state ─error→ FAILED

Parsing runs off the event loop. Records are merged one at a time in date
order, each committed on its own, so a failure part-way keeps everything
already written and a re-run picks up where it stopped (merging is
idempotent). A failure scoped to one record is reported as a warning and
the run continues; a storage failure ends the run and carries the partial
summary with it.

Cancellation is cooperative and checked between records. Writes already
made are kept and the retention cleanup is skipped.
"""

import asyncio
import time
from collections.abc import Iterable
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from pathlib import Path

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import InvalidStateTransitionError, NoDataFoundError, StorageFailureError
from shared.metrics import (
    import_duration_seconds,
    import_records_total,
    import_warnings_total,
    parse_duration_seconds,
)
from wellness.domain.models import (
    DailyActivityRecord,
    ImportPreview,
    ImportSource,
    ImportSummary,
    MergeOutcome,
    SampleKind,
    WeightRecord,
)
from wellness.normalizer import build_preview, normalize_outcome
from wellness.parsers.archive import open_snapshot
from wellness.parsers.garmin_csv import GarminCsvParser
from wellness.parsers.snapshot import HealthConnectSnapshot
from wellness.reconciliation import merge_activity, merge_weight
from wellness.repository import JournalRepository
from wellness.samples import IntradaySampleManager

logger = structlog.get_logger()


class ImportState(StrEnum):
    IDLE = "idle"
    PARSING = "parsing"
    PREVIEW_READY = "preview_ready"
    NORMALIZING = "normalizing"
    MERGING = "merging"
    PERSISTING = "persisting"
    CLEANING_UP = "cleaning_up"
    SUMMARIZED = "summarized"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS: dict[ImportState, set[ImportState]] = {
    ImportState.IDLE: {ImportState.PARSING},
    ImportState.PARSING: {ImportState.PREVIEW_READY},
    ImportState.PREVIEW_READY: {ImportState.NORMALIZING, ImportState.CANCELLED},
    ImportState.NORMALIZING: {ImportState.MERGING},
    ImportState.MERGING: {ImportState.PERSISTING, ImportState.CLEANING_UP, ImportState.SUMMARIZED},
    ImportState.PERSISTING: {ImportState.CLEANING_UP, ImportState.SUMMARIZED},
    ImportState.CLEANING_UP: {ImportState.SUMMARIZED},
}

_TERMINAL = {ImportState.SUMMARIZED, ImportState.FAILED, ImportState.CANCELLED}


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running import."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class PartialMergeFailure:
    """One record that could not be merged. Recoverable: the run continues."""

    day: date
    category: str
    reason: str

    def describe(self) -> str:
        return f"{self.day.isoformat()}: {self.category} not imported ({self.reason})"


class ImportOrchestrator:
    """Drives one import run against one session. Not reusable across runs."""

    def __init__(
        self,
        session: AsyncSession,
        token: CancellationToken | None = None,
        today: date | None = None,
        retention_days: int | None = None,
    ):
        self.repo = JournalRepository(session)
        self.samples = IntradaySampleManager(self.repo)
        self.token = token or CancellationToken()
        self.today = today
        self.retention_days = retention_days

        self.state = ImportState.IDLE
        self.source: ImportSource | None = None
        self.preview: ImportPreview | None = None

        self._activities: list[DailyActivityRecord] = []
        self._weights: list[WeightRecord] = []
        self._intraday_days: dict[SampleKind, int] = {}
        self._warnings: list[str] = []
        self._snapshot: HealthConnectSnapshot | None = None
        self._snapshot_warning_mark = 0
        self._resources = ExitStack()

    # --- state ---

    def _transition(self, target: ImportState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if target is ImportState.FAILED and self.state not in _TERMINAL:
            allowed = {target}
        if target not in allowed:
            raise InvalidStateTransitionError(self.state.value, target.value)
        logger.debug(
            "import_state_changed",
            source=self._source_label,
            previous=self.state.value,
            state=target.value,
        )
        self.state = target

    def _fail(self) -> None:
        if self.state not in _TERMINAL:
            self._transition(ImportState.FAILED)
        self._resources.close()

    @property
    def _source_label(self) -> str:
        return self.source.value if self.source else "unknown"

    # --- parsing ---

    async def parse_garmin(self, files: Iterable[tuple[str, str | bytes]]) -> ImportPreview:
        """Parse Garmin CSV exports and return the preview. Nothing is written."""
        self._transition(ImportState.PARSING)
        self.source = ImportSource.GARMIN_CSV
        start = time.monotonic()
        files = list(files)
        try:
            outcome = await asyncio.to_thread(GarminCsvParser().parse, files)
            await self._prepare(outcome)
        except Exception:
            self._fail()
            raise
        finally:
            elapsed = time.monotonic() - start
            parse_duration_seconds.labels(source=self._source_label).observe(elapsed)
        return self._ready()

    async def parse_snapshot(self, path: str | Path, since: date | None = None) -> ImportPreview:
        """Unwrap and read a Health Connect backup and return the preview.

        The unwrapped database stays open until confirm() or abandon(), since
        intraday series are streamed from it while persisting.
        """
        self._transition(ImportState.PARSING)
        self.source = ImportSource.HEALTH_CONNECT
        start = time.monotonic()
        try:
            outcome = await asyncio.to_thread(self._read_snapshot, Path(path), since)
            await self._prepare(outcome)
        except Exception:
            self._fail()
            raise
        finally:
            elapsed = time.monotonic() - start
            parse_duration_seconds.labels(source=self._source_label).observe(elapsed)
        return self._ready()

    def _read_snapshot(self, path: Path, since: date | None):
        db_path = self._resources.enter_context(open_snapshot(path))
        self._snapshot = self._resources.enter_context(HealthConnectSnapshot(db_path, since=since))
        outcome = self._snapshot.extract()
        self._intraday_days = self._snapshot.intraday_day_counts()
        self._snapshot_warning_mark = len(self._snapshot.warnings)
        return outcome

    async def _prepare(self, outcome) -> None:
        activities, weights, warnings = await asyncio.to_thread(
            normalize_outcome, outcome, self.today
        )
        self._activities = activities
        self._weights = weights
        self._warnings = [*outcome.warnings, *warnings]
        for stage, items in (("parse", outcome.warnings), ("normalize", warnings)):
            if items:
                import_warnings_total.labels(source=self._source_label, stage=stage).inc(len(items))

        if not (self._activities or self._weights or self._intraday_days):
            raise NoDataFoundError(
                "Nothing importable was found in the input", warnings=self._warnings
            )

        self.preview = build_preview(
            self.source, self._activities, self._weights, self._intraday_days, self._warnings
        )

    def _ready(self) -> ImportPreview:
        self._transition(ImportState.PREVIEW_READY)
        logger.info(
            "import_preview_ready",
            source=self._source_label,
            days=self.preview.total_days,
            weights=self.preview.weight_count,
            warnings=len(self.preview.warnings),
        )
        return self.preview

    def abandon(self) -> None:
        """Drop a previewed import without writing anything."""
        self._transition(ImportState.CANCELLED)
        self._resources.close()
        logger.info("import_abandoned", source=self._source_label)

    # --- confirm ---

    async def confirm(self) -> ImportSummary:
        """Write the previewed import and return its summary."""
        self._transition(ImportState.NORMALIZING)
        start = time.monotonic()
        summary = ImportSummary(source=self.source, warnings=list(self._warnings))
        log = logger.bind(source=self._source_label)

        try:
            if not (self._activities or self._weights or self._intraday_days):
                raise NoDataFoundError(
                    "Nothing importable was found in the input", warnings=self._warnings
                )

            self._transition(ImportState.MERGING)
            await self._merge_all(summary)

            if not self.token.cancelled and self._snapshot is not None:
                self._transition(ImportState.PERSISTING)
                await self._persist_samples(summary)

            if self.token.cancelled:
                summary.cancelled = True
                log.warning(
                    "import_cancelled",
                    added=summary.added_count,
                    updated=summary.updated_count,
                )
            else:
                self._transition(ImportState.CLEANING_UP)
                purged = await self.samples.cleanup_all(self.retention_days, self.today)
                summary.intraday_days_purged = {k: v for k, v in purged.items() if v}

            self._transition(ImportState.SUMMARIZED)
        except StorageFailureError as exc:
            exc.summary = summary
            log.error("import_storage_failed", state=self.state.value, added=summary.added_count)
            self._fail()
            raise
        except Exception:
            log.exception("import_failed", state=self.state.value)
            self._fail()
            raise
        finally:
            self._resources.close()
            elapsed = time.monotonic() - start
            import_duration_seconds.labels(source=self._source_label).observe(elapsed)

        log.info(
            "import_summarized",
            added=summary.added_count,
            updated=summary.updated_count,
            skipped=summary.skipped_count,
            failed=summary.failed_count,
            warnings=len(summary.warnings),
        )
        return summary

    async def _merge_all(self, summary: ImportSummary) -> None:
        for record in self._activities:
            if self.token.cancelled:
                return
            await self._merge_one(record, summary)
        for weight in self._weights:
            if self.token.cancelled:
                return
            await self._merge_one(weight, summary)

    async def _merge_one(
        self, record: DailyActivityRecord | WeightRecord, summary: ImportSummary
    ) -> None:
        is_weight = isinstance(record, WeightRecord)
        category = "weight" if is_weight else "activity"
        counts = summary.weights if is_weight else summary.activities

        async def work() -> MergeOutcome:
            if is_weight:
                existing = await self.repo.get_weight_by_date(record.date)
                merged, outcome = merge_weight(existing, record)
                if outcome in (MergeOutcome.ADDED, MergeOutcome.UPDATED):
                    await self.repo.upsert_weight(merged)
            else:
                existing = await self.repo.get_activity_by_date(record.date)
                merged, outcome = merge_activity(existing, record)
                if outcome in (MergeOutcome.ADDED, MergeOutcome.UPDATED):
                    await self.repo.upsert_activity(merged)
            return outcome

        try:
            outcome = await self.repo.run_unit(work)
        except (IntegrityError, PydanticValidationError, ValueError) as exc:
            await self.repo.rollback()
            failure = PartialMergeFailure(record.date, category, str(exc).splitlines()[0])
            counts.failed += 1
            summary.warnings.append(failure.describe())
            import_records_total.labels(source=self._source_label, outcome="failed").inc()
            import_warnings_total.labels(source=self._source_label, stage="merge").inc()
            logger.warning(
                "record_merge_failed",
                category=category,
                date=str(record.date),
                reason=failure.reason,
            )
            return

        counts.record(outcome)
        import_records_total.labels(source=self._source_label, outcome=outcome.value).inc()
        logger.debug(
            "record_merged", category=category, date=str(record.date), outcome=outcome.value
        )

    async def _persist_samples(self, summary: ImportSummary) -> None:
        for kind in SampleKind:
            series = self._snapshot.intraday_series(kind)
            stored = 0
            while not self.token.cancelled:
                item = await asyncio.to_thread(next, series, None)
                if item is None:
                    break
                day, samples = item
                if await self.samples.store_samples(kind, day, samples) is not None:
                    stored += 1
            if stored:
                summary.intraday_days_stored[kind] = stored
            if self.token.cancelled:
                return

        new_warnings = self._snapshot.warnings[self._snapshot_warning_mark :]
        if new_warnings:
            summary.warnings.extend(new_warnings)
            import_warnings_total.labels(source=self._source_label, stage="persist").inc(
                len(new_warnings)
            )
