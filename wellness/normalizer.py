"""Raw source variants → canonical records.

One normalization function per raw variant. All unit conversion happens
here, together with the absent-vs-zero rule: a raw value of 0 becomes None
unless the canonical field treats zero as a real measurement.

After mapping, the canonical validation rules run. A bad field is cleared
with a warning; a bad date drops the whole record.
"""

from collections.abc import Iterable
from datetime import UTC, date, datetime
from typing import Any

import structlog

from wellness.domain.models import (
    ACTIVITY_METRIC_FIELDS,
    ZERO_VALID_FIELDS,
    DailyActivityRecord,
    ImportPreview,
    ImportSource,
    SampleKind,
    WeightRecord,
)
from wellness.domain.raw import (
    GarminDayFields,
    ParseOutcome,
    SnapshotBodyComposition,
    SnapshotDayFields,
)
from wellness.domain.validation import (
    rejects_record,
    validate_activity_record,
    validate_weight_record,
)

logger = structlog.get_logger()

JOULES_PER_KCAL = 4184
SECONDS_PER_DAY = 86_400

# Preview metric name → canonical fields that count towards it
METRIC_GROUPS: dict[str, tuple[str, ...]] = {
    "steps": ("steps",),
    "calories": ("total_calories", "active_calories", "resting_calories"),
    "intensity": ("intensity_minutes",),
    "stress": ("stress_level",),
    "distance": ("distance_meters",),
    "floors": ("floors_climbed",),
    "heart_rate": ("heart_rate_resting", "heart_rate_max"),
    "sleep": ("sleep_seconds",),
    "body_battery": ("body_battery",),
    "hrv": ("hrv_overnight", "hrv_7day_avg"),
}

_FLOAT_FIELDS = {"distance_meters"}


def _round(value: float | None) -> int | None:
    return int(round(value)) if value is not None else None


def _scale(value: float | None, factor: float) -> float | None:
    return value * factor if value is not None else None


def watts_to_kcal_per_day(watts: float | None) -> float | None:
    """Health Connect stores BMR as power; one watt sustained for a day is ~20.65 kcal."""
    return _scale(watts, SECONDS_PER_DAY / JOULES_PER_KCAL)


def fraction_to_percent(value: float | None) -> float | None:
    if value is None:
        return None
    return value * 100 if value <= 1 else value


def _derive_active(
    total: float | None, active: float | None, resting: float | None
) -> float | None:
    if active is not None or total is None or resting is None:
        return active
    derived = total - resting
    return derived if derived > 0 else None


def _finalize_activity(
    day: date, values: dict[str, Any], warnings: list[str], today: date | None
) -> DailyActivityRecord | None:
    record: dict[str, Any] = {"date": day}
    for name in ACTIVITY_METRIC_FIELDS:
        value = values.get(name)
        if value is None:
            continue
        value = round(float(value), 1) if name in _FLOAT_FIELDS else _round(value)
        # Sub-unit readings round to zero and count as absent like any other zero
        if value == 0 and name not in ZERO_VALID_FIELDS:
            continue
        record[name] = value

    errors = validate_activity_record(record, today=today)
    if rejects_record(errors):
        warnings.extend(e.describe(day) for e in errors if e.field == "date")
        logger.warning("record_dropped", date=str(day), reasons=[e.reason for e in errors])
        return None
    for error in errors:
        record.pop(error.field, None)
        warnings.append(error.describe(day))

    result = DailyActivityRecord(**record)
    return result if result.has_data else None


def normalize_garmin_day(
    raw: GarminDayFields, warnings: list[str] | None = None, today: date | None = None
) -> DailyActivityRecord | None:
    """Map one Garmin per-date field bag. Returns None if nothing valid remains."""
    warnings = warnings if warnings is not None else []
    values = {
        "steps": raw.steps,
        "total_calories": raw.total_calories,
        "active_calories": _derive_active(
            raw.total_calories, raw.active_calories, raw.resting_calories
        ),
        "resting_calories": raw.resting_calories,
        "intensity_minutes": raw.intensity_minutes,
        "distance_meters": _scale(raw.distance_km, 1000),
        "heart_rate_resting": raw.resting_hr,
        "heart_rate_max": raw.max_hr,
        "stress_level": raw.stress,
        "body_battery": raw.body_battery,
        "sleep_seconds": raw.sleep_seconds,
        "hrv_overnight": raw.hrv_overnight_ms,
        "hrv_7day_avg": raw.hrv_7day_avg_ms,
    }
    return _finalize_activity(raw.date, values, warnings, today)


def normalize_snapshot_day(
    raw: SnapshotDayFields, warnings: list[str] | None = None, today: date | None = None
) -> DailyActivityRecord | None:
    """Map one Health Connect per-date aggregate. Energy is stored in small calories."""
    warnings = warnings if warnings is not None else []
    total = _scale(raw.total_energy_cal, 1 / 1000)
    resting = watts_to_kcal_per_day(raw.bmr_watts)
    values = {
        "steps": raw.steps,
        "total_calories": total,
        "active_calories": _derive_active(total, _scale(raw.active_energy_cal, 1 / 1000), resting),
        "resting_calories": resting,
        "distance_meters": raw.distance_m,
        "floors_climbed": raw.floors,
        "heart_rate_resting": raw.resting_hr,
        "heart_rate_max": raw.max_hr,
        "sleep_seconds": _scale(raw.sleep_ms, 1 / 1000),
        "hrv_overnight": raw.hrv_rmssd_ms,
    }
    return _finalize_activity(raw.date, values, warnings, today)


def normalize_body_composition(
    raw: SnapshotBodyComposition, warnings: list[str] | None = None, today: date | None = None
) -> WeightRecord | None:
    warnings = warnings if warnings is not None else []
    bmr = watts_to_kcal_per_day(raw.bmr_watts)
    record: dict[str, Any] = {
        "date": raw.date,
        "weight_kg": round(raw.weight_grams / 1000, 2),
        "body_fat_pct": _round1(fraction_to_percent(raw.body_fat)),
        "bone_mass_kg": _round1(_scale(raw.bone_mass_grams, 1 / 1000)),
        "bmr_kcal": _round(bmr),
    }

    errors = validate_weight_record(record, today=today)
    if rejects_record(errors):
        warnings.extend(e.describe(raw.date) for e in errors if e.field == "date")
        logger.warning("weight_dropped", date=str(raw.date), reasons=[e.reason for e in errors])
        return None
    for error in errors:
        record[error.field] = None
        warnings.append(error.describe(raw.date))

    return WeightRecord(
        **record,
        measured_at=datetime.fromtimestamp(raw.measured_at_ms / 1000, tz=UTC),
        source=ImportSource.HEALTH_CONNECT,
    )


def _round1(value: float | None) -> float | None:
    return round(value, 1) if value is not None else None


def normalize_outcome(
    outcome: ParseOutcome, today: date | None = None
) -> tuple[list[DailyActivityRecord], list[WeightRecord], list[str]]:
    """Normalize everything a parser produced, in date order."""
    warnings: list[str] = []
    activities: list[DailyActivityRecord] = []
    for day in sorted(outcome.days):
        raw = outcome.days[day]
        if isinstance(raw, GarminDayFields):
            record = normalize_garmin_day(raw, warnings, today)
        else:
            record = normalize_snapshot_day(raw, warnings, today)
        if record is not None:
            activities.append(record)

    weights = [
        w
        for w in (normalize_body_composition(b, warnings, today) for b in outcome.body_compositions)
        if w is not None
    ]
    weights.sort(key=lambda w: w.date)
    return activities, weights, warnings


def build_preview(
    source: ImportSource,
    activities: Iterable[DailyActivityRecord],
    weights: Iterable[WeightRecord] = (),
    intraday_days: dict[SampleKind, int] | None = None,
    warnings: list[str] | None = None,
) -> ImportPreview:
    """Summarize what an import would write. Used for confirmation only."""
    activities = list(activities)
    weights = list(weights)
    metric_days = {metric: 0 for metric in METRIC_GROUPS}
    for record in activities:
        present = record.present_fields()
        for metric, group in METRIC_GROUPS.items():
            if present.intersection(group):
                metric_days[metric] += 1

    dates = sorted({r.date for r in activities} | {w.date for w in weights})
    return ImportPreview(
        source=source,
        total_days=len(dates),
        first_date=dates[0] if dates else None,
        last_date=dates[-1] if dates else None,
        metric_days={k: v for k, v in metric_days.items() if v},
        weight_count=len(weights),
        intraday_days=dict(intraday_days or {}),
        warnings=list(warnings or []),
    )
