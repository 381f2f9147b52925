"""SQLAlchemy ORM models for the journal's wellness tables.

Tables:
- daily_activities: one merged activity aggregate per calendar date
- weights: one weight measurement per date (recency-wins)
- heart_rate_sample_days / sleep_stage_days / steps_sample_days: intraday
  samples, one row per date, replaced wholesale and purged after retention
"""

from datetime import UTC, date, datetime

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, Float, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from wellness.domain.models import SampleKind

# JSONB on Postgres, plain JSON (TEXT) on SQLite
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=lambda: datetime.now(UTC),
    )


class DailyActivityModel(TimestampMixin, Base):
    __tablename__ = "daily_activities"

    day: Mapped[date] = mapped_column("date", Date, primary_key=True)

    steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_calories: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active_calories: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resting_calories: Mapped[int | None] = mapped_column(Integer, nullable=True)
    intensity_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    floors_climbed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    heart_rate_resting: Mapped[int | None] = mapped_column(Integer, nullable=True)
    heart_rate_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stress_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    body_battery: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sleep_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hrv_overnight: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hrv_7day_avg: Mapped[int | None] = mapped_column(Integer, nullable=True)

    activities: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("steps >= 0", name="chk_activity_steps"),
        CheckConstraint("intensity_minutes >= 0", name="chk_activity_intensity"),
        CheckConstraint("sleep_seconds >= 0 AND sleep_seconds <= 86400", name="chk_activity_sleep"),
    )


class WeightModel(TimestampMixin, Base):
    __tablename__ = "weights"

    day: Mapped[date] = mapped_column("date", Date, primary_key=True)
    weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    body_fat_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    bone_mass_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    bmr_kcal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    measured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (CheckConstraint("weight_kg > 0", name="chk_weight_positive"),)


class SampleDayMixin(TimestampMixin):
    """Shared columns for the per-kind intraday tables."""

    day: Mapped[date] = mapped_column("date", Date, primary_key=True)
    samples: Mapped[list] = mapped_column(JSONType, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    stats: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class HeartRateSampleDayModel(SampleDayMixin, Base):
    __tablename__ = "heart_rate_sample_days"


class SleepStageDayModel(SampleDayMixin, Base):
    __tablename__ = "sleep_stage_days"


class StepsSampleDayModel(SampleDayMixin, Base):
    __tablename__ = "steps_sample_days"


SAMPLE_TABLES: dict[SampleKind, type[SampleDayMixin]] = {
    SampleKind.HEART_RATE: HeartRateSampleDayModel,
    SampleKind.SLEEP_STAGES: SleepStageDayModel,
    SampleKind.STEPS: StepsSampleDayModel,
}
