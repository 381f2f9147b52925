"""Source-specific raw record shapes.

A small closed set of tagged variants, one per external source shape. Values
are kept in source units; unit conversion belongs to the normalizer. None
means the source did not mention the field.
"""

from dataclasses import dataclass, field, fields
from datetime import date
from typing import Literal


@dataclass
class GarminDayFields:
    """Per-date field bag accumulated across Garmin Connect CSV exports."""

    date: date
    kind: Literal["garmin_csv"] = "garmin_csv"

    steps: int | None = None
    total_calories: float | None = None
    active_calories: float | None = None
    resting_calories: float | None = None
    intensity_minutes: int | None = None
    stress: float | None = None
    distance_km: float | None = None
    resting_hr: float | None = None
    max_hr: float | None = None
    sleep_seconds: int | None = None
    body_battery: float | None = None
    hrv_overnight_ms: float | None = None
    hrv_7day_avg_ms: float | None = None

    def absorb(self, other: "GarminDayFields") -> None:
        """Fold another file's values for the same date into this bag.

        Only present values are copied, so files covering different metrics
        combine instead of overwriting each other.
        """
        for f in fields(self):
            if f.name in ("date", "kind"):
                continue
            value = getattr(other, f.name)
            if value is not None:
                setattr(self, f.name, value)

    def present_metrics(self) -> set[str]:
        mapping = {
            "steps": "steps",
            "total_calories": "calories",
            "active_calories": "calories",
            "resting_calories": "calories",
            "intensity_minutes": "intensity",
            "stress": "stress",
            "distance_km": "distance",
            "resting_hr": "heart_rate",
            "max_hr": "heart_rate",
            "sleep_seconds": "sleep",
            "body_battery": "body_battery",
            "hrv_overnight_ms": "hrv",
            "hrv_7day_avg_ms": "hrv",
        }
        return {metric for attr, metric in mapping.items() if getattr(self, attr) is not None}


@dataclass
class SnapshotDayFields:
    """Per-date aggregates read from a Health Connect snapshot."""

    date: date
    kind: Literal["health_connect"] = "health_connect"

    steps: int | None = None
    total_energy_cal: float | None = None  # small calories, as stored
    active_energy_cal: float | None = None
    bmr_watts: float | None = None
    distance_m: float | None = None
    floors: float | None = None
    sleep_ms: int | None = None
    resting_hr: float | None = None
    max_hr: float | None = None
    hrv_rmssd_ms: float | None = None

    def present_metrics(self) -> set[str]:
        mapping = {
            "steps": "steps",
            "total_energy_cal": "calories",
            "active_energy_cal": "calories",
            "bmr_watts": "calories",
            "distance_m": "distance",
            "floors": "floors",
            "sleep_ms": "sleep",
            "resting_hr": "heart_rate",
            "max_hr": "heart_rate",
            "hrv_rmssd_ms": "hrv",
        }
        return {metric for attr, metric in mapping.items() if getattr(self, attr) is not None}


@dataclass
class SnapshotBodyComposition:
    """One scale measurement with its same-day body-composition companions."""

    date: date
    measured_at_ms: int
    weight_grams: float
    kind: Literal["health_connect_body"] = "health_connect_body"
    body_fat: float | None = None  # percentage or fraction, producer dependent
    bone_mass_grams: float | None = None
    bmr_watts: float | None = None


@dataclass
class ParseOutcome:
    """What a parser hands to the orchestrator: raw days plus recoverable warnings."""

    days: dict[date, GarminDayFields | SnapshotDayFields] = field(default_factory=dict)
    body_compositions: list[SnapshotBodyComposition] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    files_parsed: int = 0
