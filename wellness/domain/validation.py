"""Canonical validation rules for imported wellness records.

Rules validate canonical-level fields only; raw source quirks are handled by
the parsers. Each function returns a list of ValidationError; an empty list
means valid. A violation on `date` disqualifies the whole record, any other
violation disqualifies only the named field.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Any

from wellness.domain.models import ACTIVITY_METRIC_FIELDS


@dataclass
class ValidationError:
    field: str
    rule: str
    reason: str
    value: Any

    def describe(self, day: date | None) -> str:
        prefix = f"{day.isoformat()}: " if day else ""
        return f"{prefix}{self.field}={self.value!r} rejected ({self.reason})"


_MIN_BPM = 20
_MAX_BPM = 250
_SECONDS_PER_DAY = 86_400
_MINUTES_PER_DAY = 1_440
_PERCENT_FIELDS = ("stress_level", "body_battery")
_MIN_WEIGHT_KG = 20.0
_MAX_WEIGHT_KG = 400.0
_MAX_BODY_FAT_PCT = 75.0


def validate_activity_record(
    record: dict[str, Any], today: date | None = None
) -> list[ValidationError]:
    """Validate a normalized activity record before merge."""
    errors: list[ValidationError] = []
    today = today or date.today()

    # Rule 1: Required date, not in the future
    day = record.get("date")
    if not day:
        errors.append(ValidationError("date", "required", "missing_date", None))
    elif day > today:
        errors.append(ValidationError("date", "no_future", "future_date", str(day)))

    # Rule 2: Finite, non-negative numbers
    for name in ACTIVITY_METRIC_FIELDS:
        val = record.get(name)
        if val is None:
            continue
        if not isinstance(val, (int, float)) or not math.isfinite(val) or val < 0:
            errors.append(ValidationError(name, "non_negative", "negative_or_non_finite", val))

    # Rule 3: Heart rate in a physiological range
    for name in ("heart_rate_resting", "heart_rate_max"):
        val = record.get(name)
        if isinstance(val, (int, float)) and val >= 0 and not _MIN_BPM <= val <= _MAX_BPM:
            errors.append(ValidationError(name, "range", "heart_rate_out_of_range", val))

    # Rule 4: Sleep cannot exceed a day
    sleep = record.get("sleep_seconds")
    if isinstance(sleep, (int, float)) and sleep > _SECONDS_PER_DAY:
        errors.append(ValidationError("sleep_seconds", "range", "sleep_exceeds_day", sleep))

    # Rule 5: Intensity minutes cannot exceed a day
    intensity = record.get("intensity_minutes")
    if isinstance(intensity, (int, float)) and intensity > _MINUTES_PER_DAY:
        errors.append(
            ValidationError("intensity_minutes", "range", "intensity_exceeds_day", intensity)
        )

    # Rule 6: Scores on a 0-100 scale
    for name in _PERCENT_FIELDS:
        val = record.get(name)
        if isinstance(val, (int, float)) and val > 100:
            errors.append(ValidationError(name, "range", "score_out_of_range", val))

    return errors


def validate_weight_record(
    record: dict[str, Any], today: date | None = None
) -> list[ValidationError]:
    """Validate a normalized weight record before merge."""
    errors: list[ValidationError] = []
    today = today or date.today()

    day = record.get("date")
    if not day:
        errors.append(ValidationError("date", "required", "missing_date", None))
    elif day > today:
        errors.append(ValidationError("date", "no_future", "future_date", str(day)))

    weight = record.get("weight_kg")
    if weight is None or not _MIN_WEIGHT_KG <= weight <= _MAX_WEIGHT_KG:
        # Weight is the record's reason to exist; a bad weight rejects the record
        errors.append(ValidationError("date", "range", "weight_out_of_range", weight))

    body_fat = record.get("body_fat_pct")
    if body_fat is not None and not 0 < body_fat <= _MAX_BODY_FAT_PCT:
        errors.append(ValidationError("body_fat_pct", "range", "body_fat_out_of_range", body_fat))

    bone = record.get("bone_mass_kg")
    if bone is not None and bone <= 0:
        errors.append(ValidationError("bone_mass_kg", "non_negative", "bone_mass_invalid", bone))

    bmr = record.get("bmr_kcal")
    if bmr is not None and bmr <= 0:
        errors.append(ValidationError("bmr_kcal", "non_negative", "bmr_invalid", bmr))

    return errors


def rejects_record(errors: list[ValidationError]) -> bool:
    return any(e.field == "date" for e in errors)
