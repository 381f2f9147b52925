"""Shared test fixtures."""

import asyncio
import os
import sqlite3
import sys
import zipfile
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep the module-level engine away from any real store
os.environ.setdefault("JOURNAL_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JOURNAL_AUTO_CREATE_SCHEMA", "false")

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from wellness.domain.orm import Base  # noqa: E402
from wellness.parsers.snapshot import MS_PER_DAY, date_to_epoch_day  # noqa: E402

DAY_1 = date(2024, 3, 1)
DAY_2 = date(2024, 3, 2)
TODAY = date(2024, 3, 10)

GARMIN_APP_ID = 1
SCALE_APP_ID = 2
OTHER_APP_ID = 3

STEPS_CSV = "2024-06-01,8000\n2024-06-02,9000\n"
CALORIES_CSV = "2024-06-01,2200\n"

SLEEP_CSV = (
    "Sleep Score 4 Weeks\n"
    "Date,Score,Resting Heart Rate,Body Battery,Pulse Ox,Respiration,HRV Status,Quality,Duration\n"
    "2024-06-01,82,51,64,--,14,48 ms,Good,7h 55min\n"
    "2024-06-02,71,53,40,--,15,44 ms,Fair,6h 30min\n"
)

STRESS_CSV = "Stress,Avg\n06/01/2024,31\n06/02/2024,--\n"


# --- database ---


@pytest.fixture
async def async_engine():
    """In-memory SQLite engine with the journal schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", poolclass=StaticPool, echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine for tests that cross event loops (TestClient)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'journal.db'}", poolclass=NullPool)

    async def create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create())
    yield engine
    asyncio.run(engine.dispose())


# --- Health Connect snapshots ---


def _ms(day: date, hour: float) -> int:
    return date_to_epoch_day(day) * MS_PER_DAY + int(hour * 3_600_000)


def build_snapshot(path: Path, heart_rate_days: list[date] | None = None) -> Path:
    """Write a small Health Connect style backup database to `path`.

    DAY_1 carries every category; DAY_2 only steps and heart rate. Rows from
    OTHER_APP_ID must be filtered out by the app hints.
    """
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE application_info_table (
            row_id INTEGER PRIMARY KEY, package_name TEXT, app_name TEXT
        );
        CREATE TABLE steps_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER, count INTEGER
        );
        CREATE TABLE total_calories_burned_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER, energy REAL
        );
        CREATE TABLE active_calories_burned_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER, energy REAL
        );
        CREATE TABLE distance_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER, distance REAL
        );
        CREATE TABLE floors_climbed_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER, floors REAL
        );
        CREATE TABLE sleep_session_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER
        );
        CREATE TABLE sleep_stages_table (
            row_id INTEGER PRIMARY KEY, parent_key INTEGER,
            stage_start_time INTEGER, stage_end_time INTEGER, stage_type INTEGER
        );
        CREATE TABLE resting_heart_rate_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            time INTEGER, beats_per_minute INTEGER
        );
        CREATE TABLE heart_rate_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            start_time INTEGER, end_time INTEGER
        );
        CREATE TABLE heart_rate_record_series_table (
            parent_key INTEGER, epoch_millis INTEGER, beats_per_minute INTEGER
        );
        CREATE TABLE heart_rate_variability_rmssd_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            time INTEGER, heart_rate_variability_millis REAL
        );
        CREATE TABLE weight_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            time INTEGER, weight REAL
        );
        CREATE TABLE body_fat_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            time INTEGER, percentage REAL
        );
        CREATE TABLE bone_mass_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            time INTEGER, mass REAL
        );
        CREATE TABLE basal_metabolic_rate_record_table (
            row_id INTEGER PRIMARY KEY, app_info_id INTEGER, local_date INTEGER,
            time INTEGER, basal_metabolic_rate REAL
        );
        """
    )
    d1, d2 = date_to_epoch_day(DAY_1), date_to_epoch_day(DAY_2)
    conn.executemany(
        "INSERT INTO application_info_table VALUES (?, ?, ?)",
        [
            (GARMIN_APP_ID, "com.garmin.android.apps.connectmobile", "Garmin Connect"),
            (SCALE_APP_ID, "com.fitdays.fitdays", "Fitdays"),
            (OTHER_APP_ID, "com.google.android.apps.fitness", "Fit"),
        ],
    )
    conn.executemany(
        "INSERT INTO steps_record_table (app_info_id, local_date, start_time, end_time, count) "
        "VALUES (?, ?, ?, ?, ?)",
        [
            (GARMIN_APP_ID, d1, _ms(DAY_1, 8), _ms(DAY_1, 9), 4000),
            (GARMIN_APP_ID, d1, _ms(DAY_1, 12), _ms(DAY_1, 13), 3000),
            (OTHER_APP_ID, d1, _ms(DAY_1, 12), _ms(DAY_1, 13), 99999),
            (GARMIN_APP_ID, d2, _ms(DAY_2, 10), _ms(DAY_2, 11), 4000),
        ],
    )
    for table, energy in (
        ("total_calories_burned_record_table", 2_300_000),
        ("active_calories_burned_record_table", 600_000),
    ):
        conn.execute(
            f"INSERT INTO {table} (app_info_id, local_date, start_time, end_time, energy) "
            "VALUES (?, ?, ?, ?, ?)",
            (GARMIN_APP_ID, d1, _ms(DAY_1, 0), _ms(DAY_1, 24), energy),
        )
    conn.execute(
        "INSERT INTO distance_record_table (app_info_id, local_date, start_time, end_time, distance) "
        "VALUES (?, ?, ?, ?, ?)",
        (GARMIN_APP_ID, d1, _ms(DAY_1, 8), _ms(DAY_1, 9), 5234.56),
    )
    conn.execute(
        "INSERT INTO floors_climbed_record_table (app_info_id, local_date, start_time, end_time, floors) "
        "VALUES (?, ?, ?, ?, ?)",
        (GARMIN_APP_ID, d1, _ms(DAY_1, 8), _ms(DAY_1, 9), 12),
    )
    conn.execute(
        "INSERT INTO sleep_session_record_table (row_id, app_info_id, local_date, start_time, end_time) "
        "VALUES (?, ?, ?, ?, ?)",
        (1, GARMIN_APP_ID, d1, _ms(DAY_1, 0.5), _ms(DAY_1, 7.5)),
    )
    conn.executemany(
        "INSERT INTO sleep_stages_table (parent_key, stage_start_time, stage_end_time, stage_type) "
        "VALUES (?, ?, ?, ?)",
        [
            (1, _ms(DAY_1, 0.5), _ms(DAY_1, 2.5), 4),
            (1, _ms(DAY_1, 2.5), _ms(DAY_1, 4), 5),
            (1, _ms(DAY_1, 4), _ms(DAY_1, 5.5), 6),
            (1, _ms(DAY_1, 5.5), _ms(DAY_1, 7.5), 4),
        ],
    )
    conn.execute(
        "INSERT INTO resting_heart_rate_record_table (app_info_id, local_date, time, beats_per_minute) "
        "VALUES (?, ?, ?, ?)",
        (GARMIN_APP_ID, d1, _ms(DAY_1, 6), 52),
    )
    conn.execute(
        "INSERT INTO heart_rate_variability_rmssd_record_table "
        "(app_info_id, local_date, time, heart_rate_variability_millis) VALUES (?, ?, ?, ?)",
        (GARMIN_APP_ID, d1, _ms(DAY_1, 6), 45.5),
    )

    hr_days = heart_rate_days if heart_rate_days is not None else [DAY_1, DAY_2]
    for row_id, day in enumerate(hr_days, start=1):
        conn.execute(
            "INSERT INTO heart_rate_record_table (row_id, app_info_id, local_date, start_time, end_time) "
            "VALUES (?, ?, ?, ?, ?)",
            (row_id, GARMIN_APP_ID, date_to_epoch_day(day), _ms(day, 0), _ms(day, 24)),
        )
        bpms = (60, 72, 140) if day == DAY_1 else (58, 90)
        conn.executemany(
            "INSERT INTO heart_rate_record_series_table VALUES (?, ?, ?)",
            [(row_id, _ms(day, 9 + i), bpm) for i, bpm in enumerate(bpms)],
        )

    conn.executemany(
        "INSERT INTO weight_record_table (app_info_id, local_date, time, weight) VALUES (?, ?, ?, ?)",
        [
            (SCALE_APP_ID, d1, _ms(DAY_1, 8), 80_500),
            (SCALE_APP_ID, d1, _ms(DAY_1, 20), 81_000),
        ],
    )
    for table, column, value in (
        ("body_fat_record_table", "percentage", 21.5),
        ("bone_mass_record_table", "mass", 3_200),
        ("basal_metabolic_rate_record_table", "basal_metabolic_rate", 80),
    ):
        conn.execute(
            f"INSERT INTO {table} (app_info_id, local_date, time, {column}) VALUES (?, ?, ?, ?)",
            (SCALE_APP_ID, d1, _ms(DAY_1, 20), value),
        )
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def snapshot_db(tmp_path):
    return build_snapshot(tmp_path / "health_connect_export.db")


@pytest.fixture
def snapshot_zip(tmp_path, snapshot_db):
    """The backup as Google Drive hands it over: a zip holding the database."""
    archive = tmp_path / "Health Connect.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("__MACOSX/._health_connect_export.db", b"junk")
        zf.write(snapshot_db, "Health Connect/health_connect_export.db")
    return archive


def evening_of(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time(), tzinfo=UTC) + timedelta(hours=20)
