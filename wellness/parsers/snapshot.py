"""Health Connect SQLite snapshot extraction.

The backup schema is not versioned in any way we can rely on, so tables are
located by name token plus required columns rather than by exact name.
Record tables carry either a `local_date` (epoch days) or epoch-millisecond
`start_time`/`time` columns; the per-date key is derived from whichever is
present.

Every query is a GROUP BY aggregate or a cursor iterated row by row, so a
multi-year backup is never loaded into memory at once. A failing query only
drops its own category, with a warning.
"""

import itertools
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path

import structlog
from pydantic import ValidationError

from shared.config import settings
from shared.exceptions import MalformedInputError, UnsupportedSchemaError
from wellness.domain.models import (
    HeartRateSample,
    SampleKind,
    SleepStageInterval,
    StepsSample,
)
from wellness.domain.raw import ParseOutcome, SnapshotBodyComposition, SnapshotDayFields

logger = structlog.get_logger()

EPOCH = date(1970, 1, 1)
MS_PER_DAY = 86_400_000


def epoch_day_to_date(value: int) -> date:
    return EPOCH + timedelta(days=int(value))


def date_to_epoch_day(day: date) -> int:
    return (day - EPOCH).days


@dataclass(frozen=True)
class TableSpec:
    """How to recognize one Health Connect table."""

    key: str
    tokens: tuple[str, ...]
    required: tuple[str, ...]
    excludes: tuple[str, ...] = ()
    body: bool = False  # produced by a scale app rather than the wearable
    dated: bool = True  # child series tables are dated through their parent

    def matches(self, name: str, columns: set[str]) -> bool:
        lowered = name.lower()
        return (
            all(t in lowered for t in self.tokens)
            and not any(x in lowered for x in self.excludes)
            and all(c in columns for c in self.required)
        )


TABLE_SPECS: tuple[TableSpec, ...] = (
    TableSpec("steps", ("steps",), ("count",), excludes=("cadence",)),
    TableSpec("total_calories", ("total_calories",), ("energy",)),
    TableSpec("active_calories", ("active_calories",), ("energy",)),
    TableSpec("bmr", ("basal_metabolic_rate",), ("basal_metabolic_rate",), body=True),
    TableSpec("distance", ("distance",), ("distance",)),
    TableSpec("floors", ("floors",), ("floors",)),
    TableSpec("sleep_session", ("sleep_session",), ("start_time", "end_time")),
    TableSpec(
        "sleep_stages",
        ("sleep_stage",),
        ("parent_key", "stage_start_time", "stage_end_time", "stage_type"),
        dated=False,
    ),
    TableSpec("resting_hr", ("resting_heart_rate",), ("beats_per_minute",)),
    TableSpec(
        "hr_parent",
        ("heart_rate_record",),
        ("row_id",),
        excludes=("series", "resting", "variability"),
    ),
    TableSpec(
        "hr_series",
        ("heart_rate", "series"),
        ("parent_key", "epoch_millis", "beats_per_minute"),
        dated=False,
    ),
    TableSpec("hrv", ("heart_rate_variability",), ("heart_rate_variability_millis",)),
    TableSpec("weight", ("weight",), ("weight",), body=True),
    TableSpec("body_fat", ("body_fat",), ("percentage",), body=True),
    TableSpec("bone_mass", ("bone_mass",), ("mass",), body=True),
)

APP_INFO_SPEC = TableSpec("app_info", ("application_info",), ("app_name",))

DATE_COLUMNS = ("local_date", "start_time", "time")


@dataclass
class SnapshotTable:
    name: str
    columns: set[str]
    body: bool = False

    @property
    def has_app_id(self) -> bool:
        return "app_info_id" in self.columns

    @property
    def has_date(self) -> bool:
        return any(c in self.columns for c in DATE_COLUMNS)

    def date_expr(self, alias: str = "") -> str:
        prefix = f"{alias}." if alias else ""
        if "local_date" in self.columns:
            return f"{prefix}local_date"
        for col in ("start_time", "time"):
            if col in self.columns:
                return f"({prefix}{col} / {MS_PER_DAY})"
        raise MalformedInputError(f"table {self.name} has no date column")

    def time_expr(self, alias: str = "") -> str:
        prefix = f"{alias}." if alias else ""
        for col in ("time", "start_time"):
            if col in self.columns:
                return f"{prefix}{col}"
        return f"({self.date_expr(alias)} * {MS_PER_DAY})"


@dataclass
class SnapshotSchema:
    tables: dict[str, SnapshotTable] = field(default_factory=dict)
    all_tables: list[str] = field(default_factory=list)
    activity_app_ids: list[int] = field(default_factory=list)
    body_app_ids: list[int] = field(default_factory=list)

    def __contains__(self, key: str) -> bool:
        return key in self.tables

    def __getitem__(self, key: str) -> SnapshotTable:
        return self.tables[key]


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class HealthConnectSnapshot:
    """Read-only view over one Health Connect backup database.

    Usage:
        with HealthConnectSnapshot(path) as snapshot:
            outcome = snapshot.extract()
            for day, samples in snapshot.heart_rate_days():
                ...
    """

    def __init__(
        self,
        db_path: str | Path,
        since: date | None = None,
        activity_app_hints: list[str] | None = None,
        body_app_hints: list[str] | None = None,
    ):
        self.db_path = Path(db_path)
        self.since = since
        self.activity_app_hints = [
            h.lower() for h in (activity_app_hints or settings.snapshot_activity_app_hints)
        ]
        self.body_app_hints = [
            h.lower() for h in (body_app_hints or settings.snapshot_body_app_hints)
        ]
        self.warnings: list[str] = []
        self._conn: sqlite3.Connection | None = None
        self._schema: SnapshotSchema | None = None

    # --- lifecycle ---

    def open(self) -> "HealthConnectSnapshot":
        uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
        try:
            # Iterated from worker threads by the orchestrator, one at a time
            self._conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        except sqlite3.Error as exc:
            raise MalformedInputError(f"Cannot open snapshot database: {exc}") from exc
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "HealthConnectSnapshot":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    # --- schema ---

    def discover(self) -> SnapshotSchema:
        """Locate wellness tables and resolve the producing app ids."""
        if self._schema is not None:
            return self._schema

        try:
            names = [
                row[0]
                for row in self.conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
                )
            ]
            columns = {
                name: {
                    row[1].lower()
                    for row in self.conn.execute(f"PRAGMA table_info({_quote(name)})")
                }
                for name in names
            }
        except sqlite3.DatabaseError as exc:
            raise MalformedInputError(f"Not a readable SQLite database: {exc}") from exc

        schema = SnapshotSchema(all_tables=names)
        for spec in TABLE_SPECS:
            # Shortest matching name is the most specific
            matches = sorted((n for n in names if spec.matches(n, columns[n])), key=len)
            if not matches:
                continue
            table = SnapshotTable(matches[0], columns[matches[0]], spec.body)
            if spec.dated and not table.has_date:
                self._warn(f"Skipped table {table.name}: no date column")
                continue
            schema.tables[spec.key] = table

        if not schema.tables:
            raise UnsupportedSchemaError(names)

        app_table = next((n for n in names if APP_INFO_SPEC.matches(n, columns[n])), None)
        if app_table is not None:
            app_columns = columns[app_table]
            schema.activity_app_ids = self._resolve_apps(
                app_table, app_columns, self.activity_app_hints
            )
            schema.body_app_ids = self._resolve_apps(app_table, app_columns, self.body_app_hints)

        has_body = any(t.body for t in schema.tables.values())
        has_activity = any(not t.body for t in schema.tables.values())
        for label, present, hints, ids in (
            ("activity", has_activity, self.activity_app_hints, schema.activity_app_ids),
            ("body composition", has_body, self.body_app_hints, schema.body_app_ids),
        ):
            if present and not ids:
                self._warn(
                    f"No {label} app matching {', '.join(hints)} found; using data from all apps"
                )

        logger.info(
            "snapshot_schema_discovered",
            tables=sorted(t.name for t in schema.tables.values()),
            activity_app_ids=schema.activity_app_ids,
            body_app_ids=schema.body_app_ids,
        )
        self._schema = schema
        return schema

    def _resolve_apps(self, table: str, columns: set[str], hints: list[str]) -> list[int]:
        id_col = "row_id" if "row_id" in columns else "id"
        if id_col not in columns:
            return []
        name_cols = ["app_name"] + (["package_name"] if "package_name" in columns else [])
        select_cols = ", ".join([id_col, *name_cols])
        ids: list[int] = []
        try:
            for row in self.conn.execute(f"SELECT {select_cols} FROM {_quote(table)}"):
                labels = " ".join(str(v).lower() for v in row[1:] if v is not None)
                if any(h in labels for h in hints):
                    ids.append(int(row[0]))
        except sqlite3.Error as exc:
            self._warn(f"Could not read application info: {exc}")
            return []
        return ids

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning("snapshot_warning", message=message)

    # --- query helpers ---

    def _filters(self, table: SnapshotTable, alias: str = "") -> tuple[str, list[int]]:
        """WHERE clause restricting to the producing apps and the `since` bound."""
        schema = self.discover()
        clauses: list[str] = []
        params: list[int] = []
        prefix = f"{alias}." if alias else ""

        app_ids = schema.body_app_ids if table.body else schema.activity_app_ids
        if app_ids and table.has_app_id:
            clauses.append(f"{prefix}app_info_id IN ({', '.join('?' for _ in app_ids)})")
            params.extend(app_ids)
        if self.since is not None:
            clauses.append(f"{table.date_expr(alias)} >= ?")
            params.append(date_to_epoch_day(self.since))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _daily_aggregate(self, key: str, aggregate: str) -> Iterator[tuple[date, float]]:
        table = self.discover()[key]
        where, params = self._filters(table)
        day_expr = table.date_expr()
        sql = (
            f"SELECT {day_expr} AS day, {aggregate} FROM {_quote(table.name)} {where} "
            f"GROUP BY day ORDER BY day"
        )
        for day, value in self.conn.execute(sql, params):
            if day is not None and value is not None:
                yield epoch_day_to_date(day), value

    def _max_heart_rate(self) -> Iterator[tuple[date, float]]:
        schema = self.discover()
        parent, series = schema["hr_parent"], schema["hr_series"]
        where, params = self._filters(parent, alias="p")
        sql = (
            f"SELECT {parent.date_expr('p')} AS day, MAX(s.beats_per_minute) "
            f"FROM {_quote(series.name)} s JOIN {_quote(parent.name)} p ON p.row_id = s.parent_key "
            f"{where} GROUP BY day ORDER BY day"
        )
        for day, value in self.conn.execute(sql, params):
            if day is not None and value is not None:
                yield epoch_day_to_date(day), value

    # --- daily aggregates ---

    def daily_fields(self) -> dict[date, SnapshotDayFields]:
        """Per-date aggregates for every recognized activity category."""
        schema = self.discover()
        days: dict[date, SnapshotDayFields] = {}

        # (table key, raw attribute, aggregate); max heart rate needs a join
        categories = (
            ("steps", "steps", "SUM(count)"),
            ("total_calories", "total_energy_cal", "SUM(energy)"),
            ("active_calories", "active_energy_cal", "SUM(energy)"),
            ("bmr", "bmr_watts", "AVG(basal_metabolic_rate)"),
            ("distance", "distance_m", "SUM(distance)"),
            ("floors", "floors", "SUM(floors)"),
            ("sleep_session", "sleep_ms", "SUM(end_time - start_time)"),
            ("resting_hr", "resting_hr", "AVG(beats_per_minute)"),
            ("hr_series", "max_hr", None),
            ("hrv", "hrv_rmssd_ms", "AVG(heart_rate_variability_millis)"),
        )

        for key, attr, aggregate in categories:
            if key not in schema or (key == "hr_series" and "hr_parent" not in schema):
                continue
            rows = self._daily_aggregate(key, aggregate) if aggregate else self._max_heart_rate()
            try:
                for day, value in rows:
                    bag = days.setdefault(day, SnapshotDayFields(date=day))
                    if attr in ("steps", "sleep_ms"):
                        value = int(value)
                    setattr(bag, attr, value)
            except sqlite3.Error as exc:
                self._warn(f"Skipped {key.replace('_', ' ')} data: {exc}")

        return days

    def body_compositions(self) -> list[SnapshotBodyComposition]:
        """Latest weight per date with same-day body fat, bone mass and BMR."""
        schema = self.discover()
        if "weight" not in schema:
            return []

        weight = schema["weight"]
        where, params = self._filters(weight)
        sql = (
            f"SELECT {weight.date_expr()} AS day, {weight.time_expr()} AS ts, weight "
            f"FROM {_quote(weight.name)} {where} ORDER BY ts"
        )
        latest: dict[date, SnapshotBodyComposition] = {}
        try:
            for day, ts, grams in self.conn.execute(sql, params):
                if day is None or grams is None:
                    continue
                d = epoch_day_to_date(day)
                latest[d] = SnapshotBodyComposition(
                    date=d, measured_at_ms=int(ts), weight_grams=grams
                )
        except sqlite3.Error as exc:
            self._warn(f"Skipped weight data: {exc}")
            return []

        companions = (
            ("body_fat", "body_fat", "AVG(percentage)"),
            ("bone_mass", "bone_mass_grams", "AVG(mass)"),
            ("bmr", "bmr_watts", "AVG(basal_metabolic_rate)"),
        )
        for key, attr, aggregate in companions:
            if key not in schema:
                continue
            try:
                for day, value in self._daily_aggregate(key, aggregate):
                    if day in latest:
                        setattr(latest[day], attr, value)
            except sqlite3.Error as exc:
                self._warn(f"Skipped {key.replace('_', ' ')} data: {exc}")

        return [latest[d] for d in sorted(latest)]

    def extract(self) -> ParseOutcome:
        """Daily aggregates plus body composition; intraday series are read lazily."""
        days = self.daily_fields()
        bodies = self.body_compositions()
        logger.info("snapshot_extracted", days=len(days), weights=len(bodies))
        return ParseOutcome(
            days=dict(sorted(days.items())),
            body_compositions=bodies,
            warnings=self.warnings,
            files_parsed=1,
        )

    # --- intraday series ---

    def _grouped(
        self, kind: SampleKind, sql: str, params: list[int], build
    ) -> Iterator[tuple[date, list]]:
        try:
            rows = self.conn.execute(sql, params)
            for day, group in itertools.groupby(rows, key=lambda r: r[0]):
                if day is None:
                    continue
                yield epoch_day_to_date(day), self._build_rows(kind, day, group, build)
        except sqlite3.Error as exc:
            self._warn(f"Skipped {kind.value.replace('_', ' ')} samples: {exc}")

    def _build_rows(self, kind: SampleKind, day: int, rows, build) -> list:
        samples, dropped = [], 0
        for row in rows:
            if None in row:
                continue
            try:
                samples.append(build(row))
            except ValidationError:
                dropped += 1
        if dropped:
            self._warn(
                f"{epoch_day_to_date(day).isoformat()}: dropped {dropped} malformed "
                f"{kind.value.replace('_', ' ')} sample(s)"
            )
        return samples

    def heart_rate_days(self) -> Iterator[tuple[date, list[HeartRateSample]]]:
        schema = self.discover()
        if "hr_parent" not in schema or "hr_series" not in schema:
            return
        parent, series = schema["hr_parent"], schema["hr_series"]
        where, params = self._filters(parent, alias="p")
        sql = (
            f"SELECT {parent.date_expr('p')} AS day, s.epoch_millis, s.beats_per_minute "
            f"FROM {_quote(series.name)} s JOIN {_quote(parent.name)} p ON p.row_id = s.parent_key "
            f"{where} ORDER BY day, s.epoch_millis"
        )
        yield from self._grouped(
            SampleKind.HEART_RATE,
            sql,
            params,
            lambda r: HeartRateSample(timestamp_ms=r[1], bpm=r[2]),
        )

    def sleep_stage_days(self) -> Iterator[tuple[date, list[SleepStageInterval]]]:
        schema = self.discover()
        if "sleep_session" not in schema or "sleep_stages" not in schema:
            return
        session, stages = schema["sleep_session"], schema["sleep_stages"]
        if "row_id" not in session.columns:
            return
        where, params = self._filters(session, alias="p")
        sql = (
            f"SELECT {session.date_expr('p')} AS day, "
            "s.stage_start_time, s.stage_end_time, s.stage_type "
            f"FROM {_quote(stages.name)} s "
            f"JOIN {_quote(session.name)} p ON p.row_id = s.parent_key "
            f"{where} ORDER BY day, s.stage_start_time"
        )
        yield from self._grouped(
            SampleKind.SLEEP_STAGES,
            sql,
            params,
            lambda r: SleepStageInterval(start_ms=r[1], end_ms=r[2], stage=r[3]),
        )

    def steps_days(self) -> Iterator[tuple[date, list[StepsSample]]]:
        schema = self.discover()
        if "steps" not in schema or "start_time" not in schema["steps"].columns:
            return
        steps = schema["steps"]
        where, params = self._filters(steps)
        sql = (
            f"SELECT {steps.date_expr()} AS day, start_time, count FROM {_quote(steps.name)} "
            f"{where} ORDER BY day, start_time"
        )
        yield from self._grouped(
            SampleKind.STEPS,
            sql,
            params,
            lambda r: StepsSample(timestamp_ms=r[1], count=r[2]),
        )

    def intraday_series(self, kind: SampleKind) -> Iterator[tuple[date, list]]:
        readers = {
            SampleKind.HEART_RATE: self.heart_rate_days,
            SampleKind.SLEEP_STAGES: self.sleep_stage_days,
            SampleKind.STEPS: self.steps_days,
        }
        return readers[kind]()

    def intraday_day_counts(self) -> dict[SampleKind, int]:
        """Distinct dates per sample kind, for the preview."""
        schema = self.discover()
        counts: dict[SampleKind, int] = {}
        sources = {
            SampleKind.HEART_RATE: ("hr_parent", "hr_series"),
            SampleKind.SLEEP_STAGES: ("sleep_session", "sleep_stages"),
            SampleKind.STEPS: ("steps",),
        }
        for kind, keys in sources.items():
            if not all(k in schema for k in keys):
                continue
            table = schema[keys[0]]
            where, params = self._filters(table)
            sql = f"SELECT COUNT(DISTINCT {table.date_expr()}) FROM {_quote(table.name)} {where}"
            try:
                (count,) = self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                self._warn(f"Could not count {kind.value.replace('_', ' ')} days: {exc}")
                continue
            if count:
                counts[kind] = count
        return counts
