"""Initial schema: daily_activities, weights, intraday sample day tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

SAMPLE_TABLES = ("heart_rate_sample_days", "sleep_stage_days", "steps_sample_days")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    # --- daily_activities (one merged aggregate per date) ---
    op.create_table(
        "daily_activities",
        sa.Column("date", sa.Date, primary_key=True),
        sa.Column("steps", sa.Integer, nullable=True),
        sa.Column("total_calories", sa.Integer, nullable=True),
        sa.Column("active_calories", sa.Integer, nullable=True),
        sa.Column("resting_calories", sa.Integer, nullable=True),
        sa.Column("intensity_minutes", sa.Integer, nullable=True),
        sa.Column("distance_meters", sa.Float, nullable=True),
        sa.Column("floors_climbed", sa.Integer, nullable=True),
        sa.Column("heart_rate_resting", sa.Integer, nullable=True),
        sa.Column("heart_rate_max", sa.Integer, nullable=True),
        sa.Column("stress_level", sa.Integer, nullable=True),
        sa.Column("body_battery", sa.Integer, nullable=True),
        sa.Column("sleep_seconds", sa.Integer, nullable=True),
        sa.Column("hrv_overnight", sa.Integer, nullable=True),
        sa.Column("hrv_7day_avg", sa.Integer, nullable=True),
        sa.Column("activities", JSON_TYPE, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("steps >= 0", name="chk_activity_steps"),
        sa.CheckConstraint("intensity_minutes >= 0", name="chk_activity_intensity"),
        sa.CheckConstraint(
            "sleep_seconds >= 0 AND sleep_seconds <= 86400", name="chk_activity_sleep"
        ),
    )

    # --- weights (recency-wins per date) ---
    op.create_table(
        "weights",
        sa.Column("date", sa.Date, primary_key=True),
        sa.Column("weight_kg", sa.Float, nullable=False),
        sa.Column("body_fat_pct", sa.Float, nullable=True),
        sa.Column("bone_mass_kg", sa.Float, nullable=True),
        sa.Column("bmr_kcal", sa.Integer, nullable=True),
        sa.Column("measured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("weight_kg > 0", name="chk_weight_positive"),
    )

    # --- intraday samples (replaced wholesale, purged after retention) ---
    for table in SAMPLE_TABLES:
        op.create_table(
            table,
            sa.Column("date", sa.Date, primary_key=True),
            sa.Column("samples", JSON_TYPE, nullable=False),
            sa.Column("sample_count", sa.Integer, nullable=False),
            sa.Column("stats", JSON_TYPE, nullable=False),
            *_timestamps(),
        )


def downgrade() -> None:
    for table in reversed(SAMPLE_TABLES):
        op.drop_table(table)
    op.drop_table("weights")
    op.drop_table("daily_activities")
