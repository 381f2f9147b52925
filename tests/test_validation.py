"""Tests for canonical validation rules."""

from datetime import date

from wellness.domain.validation import (
    rejects_record,
    validate_activity_record,
    validate_weight_record,
)

TODAY = date(2024, 6, 10)


def _fields(errors):
    return {e.field for e in errors}


class TestActivityValidation:
    def test_valid_record_passes(self):
        record = {
            "date": date(2024, 6, 1),
            "steps": 8000,
            "heart_rate_resting": 52,
            "sleep_seconds": 28_000,
            "intensity_minutes": 0,
            "stress_level": 31,
        }
        assert validate_activity_record(record, today=TODAY) == []

    def test_missing_date_rejects_record(self):
        errors = validate_activity_record({"steps": 10}, today=TODAY)
        assert rejects_record(errors)
        assert errors[0].reason == "missing_date"

    def test_future_date_rejects_record(self):
        errors = validate_activity_record({"date": date(2024, 6, 11), "steps": 10}, today=TODAY)
        assert rejects_record(errors)
        assert errors[0].reason == "future_date"

    def test_negative_value_is_field_level(self):
        errors = validate_activity_record({"date": date(2024, 6, 1), "steps": -5}, today=TODAY)
        assert _fields(errors) == {"steps"}
        assert not rejects_record(errors)

    def test_non_finite_value(self):
        errors = validate_activity_record(
            {"date": date(2024, 6, 1), "distance_meters": float("nan")}, today=TODAY
        )
        assert _fields(errors) == {"distance_meters"}

    def test_heart_rate_out_of_range(self):
        errors = validate_activity_record(
            {"date": date(2024, 6, 1), "heart_rate_resting": 12, "heart_rate_max": 260}, today=TODAY
        )
        assert _fields(errors) == {"heart_rate_resting", "heart_rate_max"}

    def test_sleep_longer_than_a_day(self):
        errors = validate_activity_record(
            {"date": date(2024, 6, 1), "sleep_seconds": 90_000}, today=TODAY
        )
        assert errors[0].reason == "sleep_exceeds_day"

    def test_intensity_longer_than_a_day(self):
        errors = validate_activity_record(
            {"date": date(2024, 6, 1), "intensity_minutes": 1_500}, today=TODAY
        )
        assert errors[0].reason == "intensity_exceeds_day"

    def test_score_above_100(self):
        errors = validate_activity_record({"date": date(2024, 6, 1), "body_battery": 101}, today=TODAY)
        assert _fields(errors) == {"body_battery"}

    def test_describe_names_day_and_field(self):
        errors = validate_activity_record({"date": date(2024, 6, 1), "steps": -5}, today=TODAY)
        assert errors[0].describe(date(2024, 6, 1)) == "2024-06-01: steps=-5 rejected (negative_or_non_finite)"


class TestWeightValidation:
    def test_valid_weight(self):
        record = {"date": date(2024, 6, 1), "weight_kg": 81.0, "body_fat_pct": 21.5, "bmr_kcal": 1650}
        assert validate_weight_record(record, today=TODAY) == []

    def test_implausible_weight_rejects_record(self):
        errors = validate_weight_record({"date": date(2024, 6, 1), "weight_kg": 4.2}, today=TODAY)
        assert rejects_record(errors)

    def test_body_fat_out_of_range_is_field_level(self):
        errors = validate_weight_record(
            {"date": date(2024, 6, 1), "weight_kg": 80.0, "body_fat_pct": 80.0}, today=TODAY
        )
        assert _fields(errors) == {"body_fat_pct"}
        assert not rejects_record(errors)

    def test_non_positive_bone_mass_and_bmr(self):
        errors = validate_weight_record(
            {"date": date(2024, 6, 1), "weight_kg": 80.0, "bone_mass_kg": 0, "bmr_kcal": -1},
            today=TODAY,
        )
        assert _fields(errors) == {"bone_mass_kg", "bmr_kcal"}
