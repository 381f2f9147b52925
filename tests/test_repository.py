"""Tests for the journal repository against an in-memory SQLite store."""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from shared.exceptions import StorageFailureError
from tests.conftest import DAY_1, evening_of
from wellness.domain.models import DailyActivityRecord, ImportSource, WeightRecord
from wellness.repository import JournalRepository, is_database_locked


def _locked() -> OperationalError:
    return OperationalError("UPDATE daily_activities", {}, Exception("database is locked"))


class TestActivities:
    async def test_upsert_then_read(self, db_session):
        repo = JournalRepository(db_session)
        record = DailyActivityRecord(date=DAY_1, steps=8000, activities=[{"type": "run"}])
        await repo.run_unit(lambda: repo.upsert_activity(record))

        loaded = await repo.get_activity_by_date(DAY_1)
        assert loaded == record

    async def test_upsert_overwrites_in_place(self, db_session):
        repo = JournalRepository(db_session)
        await repo.run_unit(lambda: repo.upsert_activity(DailyActivityRecord(date=DAY_1, steps=1)))
        await repo.run_unit(
            lambda: repo.upsert_activity(DailyActivityRecord(date=DAY_1, steps=2, sleep_seconds=10))
        )
        loaded = await repo.get_activity_by_date(DAY_1)
        assert (loaded.steps, loaded.sleep_seconds) == (2, 10)

    async def test_missing_date(self, db_session):
        assert await JournalRepository(db_session).get_activity_by_date(date(2000, 1, 1)) is None


class TestWeights:
    async def test_round_trip_keeps_timezone(self, db_session):
        repo = JournalRepository(db_session)
        weight = WeightRecord(
            date=DAY_1,
            weight_kg=81.0,
            body_fat_pct=21.5,
            measured_at=evening_of(DAY_1),
            source=ImportSource.HEALTH_CONNECT,
        )
        await repo.run_unit(lambda: repo.upsert_weight(weight))

        loaded = await repo.get_weight_by_date(DAY_1)
        assert loaded.weight_kg == 81.0
        assert loaded.measured_at == evening_of(DAY_1)
        assert loaded.measured_at.tzinfo is not None


class TestRunUnit:
    def test_locked_detection(self):
        assert is_database_locked(_locked())
        assert not is_database_locked(OperationalError("SELECT", {}, Exception("disk I/O error")))

    async def test_locked_database_is_retried(self, db_session):
        repo = JournalRepository(db_session)
        attempts = []

        async def work():
            attempts.append(1)
            if len(attempts) == 1:
                raise _locked()
            return "done"

        assert await repo.run_unit(work) == "done"
        assert len(attempts) == 2

    async def test_persistent_failure_becomes_storage_failure(self, db_session):
        repo = JournalRepository(db_session)

        async def work():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        with pytest.raises(StorageFailureError) as exc_info:
            await repo.run_unit(work)
        assert exc_info.value.status == 503

    async def test_integrity_error_passes_through(self, db_session):
        repo = JournalRepository(db_session)

        async def work():
            raise IntegrityError("INSERT", {}, Exception("CHECK constraint failed"))

        with pytest.raises(IntegrityError):
            await repo.run_unit(work)
