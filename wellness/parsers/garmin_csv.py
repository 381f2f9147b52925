"""Garmin Connect CSV exports → per-date GarminDayFields.

Garmin's web portal exports one CSV per metric (steps, calories, stress, ...)
with a handful of layout variations: optional title lines above the header,
an unnamed date column, headerless two-column files, US or ISO dates and
unit-suffixed values. Each file is matched against a small layout catalog,
first on header keywords and then on its file name.

Files touching different metrics for the same date combine; when two files
carry the same metric for a date, the later file wins for that metric only.

Failure policy: a bad row is skipped with a line-level warning, a bad or
unrecognized file is skipped with a file-level warning. Only an empty
overall result is fatal.
"""

import csv
import io
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime

import structlog

from shared.config import settings
from shared.exceptions import MalformedInputError, NoDataFoundError
from wellness.domain.raw import GarminDayFields, ParseOutcome

logger = structlog.get_logger()

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d", "%b %d, %Y")
DATE_HEADERS = ("", "date", "day", "calendar date")
ABSENT_VALUES = ("", "--", "-", "n/a")

_NUMBER_RE = re.compile(r"^([-+]?\d+(?:\.\d+)?)\s*([a-z%°]*)$", re.IGNORECASE)
_HOURS_RE = re.compile(r"(\d+)\s*h", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+)\s*m(?:in)?", re.IGNORECASE)
_CLOCK_RE = re.compile(r"^(\d+):(\d{2})(?::(\d{2}))?$")


def parse_date(raw: str) -> date | None:
    raw = raw.strip().strip('"')
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def parse_number(raw: str) -> float | None:
    """Parse '1,234', '53 bpm', '5.2 km' or '42ms'. '--' and blanks are absent."""
    cleaned = raw.strip().replace(",", "")
    if cleaned.lower() in ABSENT_VALUES:
        return None
    match = _NUMBER_RE.match(cleaned)
    if not match:
        raise ValueError(f"not a number: {raw!r}")
    return float(match.group(1))


def parse_duration(raw: str) -> float | None:
    """Parse Garmin durations ('7h 55min', '45min', '7:55') into seconds."""
    cleaned = raw.strip()
    if cleaned.lower() in ABSENT_VALUES:
        return None
    clock = _CLOCK_RE.match(cleaned)
    if clock:
        hours, minutes, seconds = clock.groups()
        return int(hours) * 3600 + int(minutes) * 60 + int(seconds or 0)
    hours = _HOURS_RE.search(cleaned)
    minutes = _MINUTES_RE.search(cleaned)
    if not hours and not minutes:
        raise ValueError(f"not a duration: {raw!r}")
    total = 0
    if hours:
        total += int(hours.group(1)) * 3600
    if minutes:
        total += int(minutes.group(1)) * 60
    return total


@dataclass(frozen=True)
class ColumnRule:
    """Maps the first header containing one of `keywords` to a raw field."""

    field: str
    keywords: tuple[str, ...]
    parse: Callable[[str], float | None] = parse_number
    exact: bool = False

    def matches(self, keyword: str, header: str) -> bool:
        return header == keyword if self.exact else keyword in header


@dataclass(frozen=True)
class CsvLayout:
    name: str
    # Any group fully present in the header text selects the layout
    header_keywords: tuple[tuple[str, ...], ...]
    filename_keywords: tuple[str, ...]
    columns: tuple[ColumnRule, ...]
    # Field for the first value column when no header matched (headerless files)
    fallback_field: str | None = None

    def matches_header(self, header_text: str) -> bool:
        return any(all(k in header_text for k in group) for group in self.header_keywords)

    def matches_filename(self, filename: str) -> bool:
        return any(k in filename for k in self.filename_keywords)


# Detection order matters: the sleep export also carries a resting heart rate
# column and the intensity export uses Actual/Value headers like steps.
LAYOUTS: tuple[CsvLayout, ...] = (
    CsvLayout(
        name="sleep",
        header_keywords=(("sleep score",), ("body battery",), ("avg duration",), ("avg score",)),
        filename_keywords=("sleep",),
        columns=(
            ColumnRule("sleep_seconds", ("duration",), parse=parse_duration, exact=True),
            ColumnRule("resting_hr", ("resting heart rate", "resting hr")),
            ColumnRule("body_battery", ("body battery",)),
            ColumnRule("hrv_overnight_ms", ("hrv status", "hrv")),
        ),
    ),
    CsvLayout(
        name="calories",
        header_keywords=(("active calories",), ("calories",)),
        filename_keywords=("calorie",),
        columns=(
            ColumnRule("active_calories", ("active calories", "active")),
            ColumnRule("resting_calories", ("resting calories", "resting", "bmr")),
            ColumnRule("total_calories", ("total", "calories")),
        ),
        fallback_field="total_calories",
    ),
    CsvLayout(
        name="intensity",
        header_keywords=(("intensity minutes",), ("intensity",)),
        filename_keywords=("intensity",),
        columns=(ColumnRule("intensity_minutes", ("actual", "intensity", "minutes", "value")),),
        fallback_field="intensity_minutes",
    ),
    CsvLayout(
        name="stress",
        header_keywords=(("stress",),),
        filename_keywords=("stress",),
        columns=(ColumnRule("stress", ("stress", "avg", "actual", "value")),),
        fallback_field="stress",
    ),
    CsvLayout(
        name="steps",
        header_keywords=(("steps",), ("actual", "goal")),
        filename_keywords=("step",),
        columns=(ColumnRule("steps", ("steps", "actual", "value")),),
        fallback_field="steps",
    ),
    CsvLayout(
        name="distance",
        header_keywords=(("distance",),),
        filename_keywords=("distance",),
        columns=(ColumnRule("distance_km", ("distance", "actual", "value")),),
        fallback_field="distance_km",
    ),
    CsvLayout(
        name="heart_rate",
        header_keywords=(("resting heart rate",), ("resting hr",), ("heart rate",)),
        filename_keywords=("heart", "rhr"),
        columns=(
            ColumnRule("resting_hr", ("resting", "rhr", "actual", "value")),
            ColumnRule("max_hr", ("max", "high")),
        ),
        fallback_field="resting_hr",
    ),
    CsvLayout(
        name="hrv",
        header_keywords=(("hrv",),),
        filename_keywords=("hrv",),
        columns=(
            ColumnRule("hrv_7day_avg_ms", ("7d", "7-day", "7 day", "weekly")),
            ColumnRule("hrv_overnight_ms", ("overnight", "last night", "hrv", "value")),
        ),
        fallback_field="hrv_overnight_ms",
    ),
)

_INT_FIELDS = {"steps", "intensity_minutes", "sleep_seconds"}


@dataclass
class _Table:
    title: str
    header: list[str]
    rows: list[tuple[int, list[str]]]
    date_col: int

    @property
    def header_text(self) -> str:
        return ",".join(self.header)


def _is_title(cells: list[str]) -> bool:
    return bool(cells) and bool(cells[0].strip()) and not any(c.strip() for c in cells[1:])


def _read_table(text: str) -> _Table:
    rows = [
        (line_no, cells)
        for line_no, cells in enumerate(csv.reader(io.StringIO(text)), start=1)
        if any(c.strip() for c in cells)
    ]
    titles: list[str] = []
    while rows and _is_title(rows[0][1]):
        titles.append(rows.pop(0)[1][0].strip().lower())
    if not rows:
        raise MalformedInputError("file has no data rows")

    first = [c.strip().lower() for c in rows[0][1]]
    if first and parse_date(first[0]) is not None:
        # Headerless: date in column 0, values after it
        return _Table(title=" ".join(titles), header=[], rows=rows, date_col=0)

    date_col = next((i for i, h in enumerate(first) if h in DATE_HEADERS), 0)
    return _Table(title=" ".join(titles), header=first, rows=rows[1:], date_col=date_col)


def detect_layout(table: _Table, filename: str) -> CsvLayout | None:
    header_text = f"{table.title},{table.header_text}"
    for layout in LAYOUTS:
        if layout.matches_header(header_text):
            return layout
    lowered = filename.lower()
    for layout in LAYOUTS:
        if layout.matches_filename(lowered):
            return layout
    return None


def _resolve_columns(layout: CsvLayout, table: _Table) -> dict[int, ColumnRule]:
    resolved: dict[int, ColumnRule] = {}
    for rule in layout.columns:
        idx = _find_column(rule, table, used=resolved.keys())
        if idx is not None:
            resolved[idx] = rule
    if not resolved and layout.fallback_field:
        rule = next(r for r in layout.columns if r.field == layout.fallback_field)
        width = max(len(cells) for _, cells in table.rows) if table.rows else 0
        value_col = next((i for i in range(width) if i != table.date_col), None)
        if value_col is not None:
            resolved[value_col] = ColumnRule(layout.fallback_field, (), parse=rule.parse)
    return resolved


def _find_column(rule: ColumnRule, table: _Table, used) -> int | None:
    for keyword in rule.keywords:
        for idx, header in enumerate(table.header):
            if idx == table.date_col or idx in used:
                continue
            if rule.matches(keyword, header):
                return idx
    return None


class GarminCsvParser:
    """Parse a batch of Garmin Connect CSV exports into one per-date field bag."""

    def __init__(self, weekly_calories_threshold: float | None = None):
        self.weekly_calories_threshold = (
            weekly_calories_threshold
            if weekly_calories_threshold is not None
            else settings.weekly_calories_threshold
        )

    def parse(self, files: Iterable[tuple[str, str | bytes]]) -> ParseOutcome:
        outcome = ParseOutcome()

        for name, content in files:
            try:
                text = content.decode("utf-8-sig") if isinstance(content, bytes) else content
                days = self.parse_file(name, text, outcome.warnings)
            except (MalformedInputError, UnicodeDecodeError, csv.Error) as exc:
                reason = exc.detail if isinstance(exc, MalformedInputError) else str(exc)
                outcome.warnings.append(f"{name}: skipped ({reason})")
                logger.warning("garmin_file_skipped", file=name, reason=reason)
                continue

            outcome.files_parsed += 1
            for day, fields in days.items():
                existing = outcome.days.get(day)
                if existing is None:
                    outcome.days[day] = fields
                else:
                    existing.absorb(fields)

        if not outcome.days:
            raise NoDataFoundError(
                "No daily Garmin data found in the uploaded files", warnings=outcome.warnings
            )

        logger.info(
            "garmin_files_parsed",
            files=outcome.files_parsed,
            days=len(outcome.days),
            warnings=len(outcome.warnings),
        )
        return outcome

    def parse_file(self, name: str, text: str, warnings: list[str]) -> dict[date, GarminDayFields]:
        """Parse one export. Raises MalformedInputError for file-level problems."""
        table = _read_table(text)
        layout = detect_layout(table, name)
        if layout is None:
            raise MalformedInputError("unrecognized export layout")
        self._refuse_weekly(layout, table)

        columns = _resolve_columns(layout, table)
        if not columns:
            raise MalformedInputError(f"no {layout.name} columns found")

        weekly_intensity = layout.name == "intensity" and "weekly" in table.title
        days: dict[date, GarminDayFields] = {}

        for line_no, cells in table.rows:
            raw_date = cells[table.date_col] if table.date_col < len(cells) else ""
            day = parse_date(raw_date)
            if day is None:
                warnings.append(f"{name}:{line_no}: unparseable date {raw_date.strip()!r}")
                continue

            fields = GarminDayFields(date=day)
            try:
                for idx, rule in columns.items():
                    if idx >= len(cells):
                        continue
                    value = rule.parse(cells[idx])
                    if value is None:
                        continue
                    if weekly_intensity and rule.field == "intensity_minutes":
                        value = value / 7
                    if rule.field in _INT_FIELDS:
                        value = int(round(value))
                    setattr(fields, rule.field, value)
            except ValueError as exc:
                warnings.append(f"{name}:{line_no}: {exc}")
                continue

            if not fields.present_metrics():
                continue
            if day in days:
                days[day].absorb(fields)
            else:
                days[day] = fields

        logger.info("garmin_file_parsed", file=name, layout=layout.name, days=len(days))
        return days

    def _refuse_weekly(self, layout: CsvLayout, table: _Table) -> None:
        if layout.name == "sleep" and (
            "avg duration" in table.header_text or "avg score" in table.header_text
        ):
            raise MalformedInputError("weekly sleep summary; export daily values instead")

        if layout.name == "calories" and table.rows:
            columns = _resolve_columns(layout, table)
            total_col = next(
                (i for i, r in columns.items() if r.field == "total_calories"), None
            )
            cells = table.rows[0][1]
            if total_col is None or total_col >= len(cells):
                return
            try:
                total = parse_number(cells[total_col])
            except ValueError:
                return
            if total is not None and total > self.weekly_calories_threshold:
                raise MalformedInputError(
                    "weekly calories summary; export one month at a time for daily values"
                )
