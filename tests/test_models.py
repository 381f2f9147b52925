"""Tests for canonical domain models."""

from datetime import date

import pytest
from pydantic import ValidationError

from wellness.domain.models import (
    DailyActivityRecord,
    HeartRateSample,
    ImportSource,
    ImportSummary,
    IntradaySampleDay,
    MergeOutcome,
    OutcomeCounts,
    SampleKind,
    SleepStageInterval,
)


class TestDailyActivityRecord:
    def test_absent_fields_default_to_none(self):
        record = DailyActivityRecord(date=date(2024, 6, 1), steps=8000)
        assert record.total_calories is None
        assert record.present_fields() == {"steps"}

    def test_zero_is_present(self):
        record = DailyActivityRecord(date=date(2024, 6, 1), intensity_minutes=0)
        assert record.present_fields() == {"intensity_minutes"}
        assert record.has_data

    def test_empty_record_has_no_data(self):
        assert not DailyActivityRecord(date=date(2024, 6, 1)).has_data

    def test_sub_activities_count_as_data(self):
        record = DailyActivityRecord(date=date(2024, 6, 1), activities=[{"type": "run"}])
        assert record.has_data

    def test_date_required(self):
        with pytest.raises(ValidationError):
            DailyActivityRecord(steps=100)


class TestOutcomeCounts:
    def test_unchanged_and_skipped_both_count_as_skipped(self):
        counts = OutcomeCounts()
        for outcome in (
            MergeOutcome.ADDED,
            MergeOutcome.UPDATED,
            MergeOutcome.UNCHANGED,
            MergeOutcome.SKIPPED,
        ):
            counts.record(outcome)
        assert (counts.added, counts.updated, counts.skipped) == (1, 1, 2)


class TestImportSummary:
    def test_totals_span_categories(self):
        summary = ImportSummary(source=ImportSource.HEALTH_CONNECT)
        summary.activities.added = 3
        summary.weights.added = 1
        summary.activities.failed = 2
        assert summary.added_count == 4
        assert summary.failed_count == 2

    def test_response_includes_totals(self):
        summary = ImportSummary(source=ImportSource.GARMIN_CSV, warnings=["w"])
        summary.intraday_days_stored[SampleKind.HEART_RATE] = 5
        body = summary.to_response()
        assert body["source"] == "garmin_csv"
        assert body["added_count"] == 0
        assert body["intraday_days_stored"] == {"heart_rate": 5}
        assert body["warnings"] == ["w"]


class TestIntradayModels:
    def test_sleep_interval_duration(self):
        interval = SleepStageInterval(start_ms=1_000, end_ms=61_000, stage=4)
        assert interval.duration_ms == 60_000

    def test_sample_day_count(self):
        day = IntradaySampleDay[HeartRateSample](
            kind=SampleKind.HEART_RATE,
            date=date(2024, 6, 1),
            samples=[HeartRateSample(timestamp_ms=1, bpm=60), HeartRateSample(timestamp_ms=2, bpm=61)],
        )
        assert day.sample_count == 2
        assert day.stats == {}
