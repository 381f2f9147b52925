"""Canonical wellness domain models.

Every import source is normalized into these shapes before it touches the
store. This is the single vocabulary shared by the reconciliation engine,
the intraday sample manager and the orchestrator.

Design principles:
- Nullable measurement fields: None = "source did not provide", never zero
- One DailyActivityRecord per calendar date; merges are field-level
- Intraday sample days are replaced wholesale, never merged
- Weights carry the source timestamp that recency-wins compares
"""

from datetime import date, datetime
from enum import IntEnum, StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class ImportSource(StrEnum):
    GARMIN_CSV = "garmin_csv"
    HEALTH_CONNECT = "health_connect"


class MergeOutcome(StrEnum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


class SampleKind(StrEnum):
    HEART_RATE = "heart_rate"
    SLEEP_STAGES = "sleep_stages"
    STEPS = "steps"


# Canonical numeric metrics, in display order
ACTIVITY_METRIC_FIELDS: tuple[str, ...] = (
    "steps",
    "total_calories",
    "active_calories",
    "resting_calories",
    "intensity_minutes",
    "distance_meters",
    "floors_climbed",
    "heart_rate_resting",
    "heart_rate_max",
    "stress_level",
    "body_battery",
    "sleep_seconds",
    "hrv_overnight",
    "hrv_7day_avg",
)

# Fields where an explicit 0 is a real measurement rather than "no data"
ZERO_VALID_FIELDS: frozenset[str] = frozenset({"intensity_minutes"})


class DailyActivityRecord(BaseModel):
    """Canonical per-day activity aggregate."""

    date: date

    steps: int | None = None
    total_calories: int | None = None
    active_calories: int | None = None
    resting_calories: int | None = None
    intensity_minutes: int | None = None
    distance_meters: float | None = None
    floors_climbed: int | None = None
    heart_rate_resting: int | None = None
    heart_rate_max: int | None = None
    stress_level: int | None = None
    body_battery: int | None = None
    sleep_seconds: int | None = None
    hrv_overnight: int | None = None
    hrv_7day_avg: int | None = None

    # Opaque sub-activities (workouts); never interpreted by the pipeline
    activities: list[dict[str, Any]] = Field(default_factory=list)

    def present_fields(self) -> set[str]:
        return {f for f in ACTIVITY_METRIC_FIELDS if getattr(self, f) is not None}

    @property
    def has_data(self) -> bool:
        return bool(self.present_fields()) or bool(self.activities)


class WeightRecord(BaseModel):
    """One weight measurement per date, with optional body composition."""

    date: date
    weight_kg: float
    body_fat_pct: float | None = None
    bone_mass_kg: float | None = None
    bmr_kcal: int | None = None
    measured_at: datetime
    source: ImportSource


# --- Intraday samples ---


class SleepStageType(IntEnum):
    """Health Connect sleep stage codes."""

    AWAKE = 1
    SLEEPING = 2
    OUT_OF_BED = 3
    LIGHT = 4
    DEEP = 5
    REM = 6
    AWAKE_IN_BED = 7
    UNKNOWN = 8


class HeartRateSample(BaseModel):
    timestamp_ms: int
    bpm: float


class SleepStageInterval(BaseModel):
    start_ms: int
    end_ms: int
    stage: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


class StepsSample(BaseModel):
    timestamp_ms: int
    count: float


SampleT = TypeVar("SampleT", HeartRateSample, SleepStageInterval, StepsSample)


class IntradaySampleDay(BaseModel, Generic[SampleT]):
    """All samples of one kind for one date, plus derived summary statistics."""

    kind: SampleKind
    date: date
    samples: list[SampleT]
    stats: dict[str, Any] = Field(default_factory=dict)

    @property
    def sample_count(self) -> int:
        return len(self.samples)


SAMPLE_MODELS: dict[SampleKind, type[BaseModel]] = {
    SampleKind.HEART_RATE: HeartRateSample,
    SampleKind.SLEEP_STAGES: SleepStageInterval,
    SampleKind.STEPS: StepsSample,
}


# --- Run results ---


class OutcomeCounts(BaseModel):
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, outcome: MergeOutcome) -> None:
        if outcome is MergeOutcome.ADDED:
            self.added += 1
        elif outcome is MergeOutcome.UPDATED:
            self.updated += 1
        else:
            # UNCHANGED ("no new data") and SKIPPED ("older reading") both count as skipped
            self.skipped += 1


class ImportSummary(BaseModel):
    """Ephemeral result of one orchestrator run; returned, never persisted."""

    source: ImportSource
    activities: OutcomeCounts = Field(default_factory=OutcomeCounts)
    weights: OutcomeCounts = Field(default_factory=OutcomeCounts)
    intraday_days_stored: dict[SampleKind, int] = Field(default_factory=dict)
    intraday_days_purged: dict[SampleKind, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def added_count(self) -> int:
        return self.activities.added + self.weights.added

    @property
    def updated_count(self) -> int:
        return self.activities.updated + self.weights.updated

    @property
    def skipped_count(self) -> int:
        return self.activities.skipped + self.weights.skipped

    @property
    def failed_count(self) -> int:
        return self.activities.failed + self.weights.failed

    def to_response(self) -> dict[str, Any]:
        body = self.model_dump(mode="json")
        body.update(
            added_count=self.added_count,
            updated_count=self.updated_count,
            skipped_count=self.skipped_count,
            failed_count=self.failed_count,
        )
        return body


class ImportPreview(BaseModel):
    """Per-metric day counts shown to the user before anything is written."""

    source: ImportSource
    total_days: int = 0
    first_date: date | None = None
    last_date: date | None = None
    metric_days: dict[str, int] = Field(default_factory=dict)
    weight_count: int = 0
    intraday_days: dict[SampleKind, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
