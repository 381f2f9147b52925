"""Tests for Health Connect snapshot extraction."""

import sqlite3
from datetime import date

import pytest

from shared.exceptions import NoDataFoundError, UnsupportedSchemaError
from tests.conftest import DAY_1, DAY_2, GARMIN_APP_ID, SCALE_APP_ID
from wellness.domain.models import SampleKind
from wellness.parsers.snapshot import (
    HealthConnectSnapshot,
    date_to_epoch_day,
    epoch_day_to_date,
)


class TestEpochDays:
    def test_round_trip_known_date(self):
        assert date_to_epoch_day(date(1970, 1, 2)) == 1
        assert epoch_day_to_date(19_723) == date(2024, 1, 1)


class TestDiscovery:
    def test_tables_found_by_token_and_columns(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            schema = snapshot.discover()
        assert schema["steps"].name == "steps_record_table"
        assert schema["hr_parent"].name == "heart_rate_record_table"
        assert schema["hr_series"].name == "heart_rate_record_series_table"
        assert schema["resting_hr"].name == "resting_heart_rate_record_table"
        assert schema["bmr"].body

    def test_app_ids_resolved_from_hints(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            schema = snapshot.discover()
            assert snapshot.warnings == []
        assert schema.activity_app_ids == [GARMIN_APP_ID]
        assert schema.body_app_ids == [SCALE_APP_ID]

    def test_unmatched_hint_warns_and_uses_all_apps(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db, activity_app_hints=["polar"]) as snapshot:
            days = snapshot.daily_fields()
            assert any("polar" in w for w in snapshot.warnings)
        # The third-party steps row is no longer filtered out
        assert days[DAY_1].steps == 7000 + 99999

    def test_no_wellness_tables(self, tmp_path):
        path = tmp_path / "other.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE contacts (id INTEGER, name TEXT)")
        conn.close()
        with HealthConnectSnapshot(path) as snapshot:
            with pytest.raises(UnsupportedSchemaError) as exc_info:
                snapshot.discover()
        assert isinstance(exc_info.value, NoDataFoundError)
        assert "contacts" in exc_info.value.detail


class TestDailyAggregates:
    def test_every_category_for_a_full_day(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            days = snapshot.daily_fields()

        day = days[DAY_1]
        assert day.steps == 7000
        assert day.total_energy_cal == 2_300_000
        assert day.active_energy_cal == 600_000
        assert day.bmr_watts == 80
        assert day.distance_m == pytest.approx(5234.56)
        assert day.floors == 12
        assert day.sleep_ms == 7 * 3_600_000
        assert day.resting_hr == 52
        assert day.max_hr == 140
        assert day.hrv_rmssd_ms == pytest.approx(45.5)

    def test_partial_day(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            day = snapshot.daily_fields()[DAY_2]
        assert (day.steps, day.max_hr, day.sleep_ms) == (4000, 90, None)

    def test_since_bound(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db, since=DAY_2) as snapshot:
            days = snapshot.daily_fields()
        assert list(days) == [DAY_2]

    def test_undated_table_drops_only_its_category(self, snapshot_db):
        conn = sqlite3.connect(snapshot_db)
        conn.execute("DROP TABLE floors_climbed_record_table")
        # Matches the catalog by name and column, but has nothing to date rows by
        conn.execute("CREATE TABLE floors_climbed_record_table (row_id INTEGER, floors REAL)")
        conn.commit()
        conn.close()

        with HealthConnectSnapshot(snapshot_db) as snapshot:
            days = snapshot.daily_fields()
            assert snapshot.warnings == [
                "Skipped table floors_climbed_record_table: no date column"
            ]
        assert days[DAY_1].floors is None
        assert days[DAY_1].steps == 7000


class TestBodyComposition:
    def test_latest_weight_with_companions(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            (body,) = snapshot.body_compositions()
        assert body.date == DAY_1
        assert body.weight_grams == 81_000
        assert body.body_fat == 21.5
        assert body.bone_mass_grams == 3_200
        assert body.bmr_watts == 80

    def test_extract_bundles_days_and_weights(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            outcome = snapshot.extract()
        assert list(outcome.days) == [DAY_1, DAY_2]
        assert len(outcome.body_compositions) == 1
        assert outcome.files_parsed == 1


class TestIntradaySeries:
    def test_heart_rate_grouped_by_day(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            series = dict(snapshot.heart_rate_days())
        assert [s.bpm for s in series[DAY_1]] == [60, 72, 140]
        assert [s.bpm for s in series[DAY_2]] == [58, 90]

    def test_malformed_sample_row_dropped_with_warning(self, snapshot_db):
        conn = sqlite3.connect(snapshot_db)
        # A REAL timestamp in an INTEGER column survives SQLite's type affinity
        conn.execute(
            "UPDATE heart_rate_record_series_table SET epoch_millis = epoch_millis + 0.5 "
            "WHERE beats_per_minute = 140"
        )
        conn.commit()
        conn.close()

        with HealthConnectSnapshot(snapshot_db) as snapshot:
            series = dict(snapshot.heart_rate_days())
            warnings = list(snapshot.warnings)
        assert [s.bpm for s in series[DAY_1]] == [60, 72]
        assert [s.bpm for s in series[DAY_2]] == [58, 90]
        assert "2024-03-01: dropped 1 malformed heart rate sample(s)" in warnings

    def test_sleep_stages(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            series = dict(snapshot.intraday_series(SampleKind.SLEEP_STAGES))
        assert [s.stage for s in series[DAY_1]] == [4, 5, 6, 4]

    def test_steps_filtered_by_app(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            series = dict(snapshot.steps_days())
        assert [s.count for s in series[DAY_1]] == [4000, 3000]

    def test_day_counts_for_preview(self, snapshot_db):
        with HealthConnectSnapshot(snapshot_db) as snapshot:
            counts = snapshot.intraday_day_counts()
        assert counts == {
            SampleKind.HEART_RATE: 2,
            SampleKind.SLEEP_STAGES: 1,
            SampleKind.STEPS: 2,
        }
