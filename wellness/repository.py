"""Journal repository: all DB access for imported wellness data.

Every write goes through `run_unit`, which executes one record's work and
commits it as a single unit. SQLite answers concurrent writers with
"database is locked"; those units are retried with backoff before the
failure is surfaced as StorageFailureError. Integrity errors belong to the
record that caused them and are re-raised untouched.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from shared.config import settings
from shared.exceptions import StorageFailureError
from wellness.domain.models import (
    ACTIVITY_METRIC_FIELDS,
    SAMPLE_MODELS,
    DailyActivityRecord,
    ImportSource,
    IntradaySampleDay,
    SampleKind,
    WeightRecord,
)
from wellness.domain.orm import SAMPLE_TABLES, DailyActivityModel, WeightModel

logger = structlog.get_logger()

T = TypeVar("T")


def is_database_locked(exc: BaseException) -> bool:
    return isinstance(exc, OperationalError) and "locked" in str(exc).lower()


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _activity_from_model(model: DailyActivityModel) -> DailyActivityRecord:
    return DailyActivityRecord(
        date=model.day,
        activities=list(model.activities or []),
        **{name: getattr(model, name) for name in ACTIVITY_METRIC_FIELDS},
    )


def _weight_from_model(model: WeightModel) -> WeightRecord:
    return WeightRecord(
        date=model.day,
        weight_kg=model.weight_kg,
        body_fat_pct=model.body_fat_pct,
        bone_mass_kg=model.bone_mass_kg,
        bmr_kcal=model.bmr_kcal,
        measured_at=_aware(model.measured_at),
        source=ImportSource(model.source),
    )


class JournalRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # --- units of work ---

    async def run_unit(self, work: Callable[[], Awaitable[T]]) -> T:
        """Run `work` and commit it, retrying the whole unit on a locked database."""
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_database_locked),
            wait=wait_exponential_jitter(
                initial=0.1, max=settings.storage_retry_max_wait_seconds, jitter=0.2
            ),
            stop=stop_after_attempt(settings.storage_retry_attempts),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        result = await work()
                        await self.session.commit()
                    except SQLAlchemyError:
                        await self.session.rollback()
                        raise
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("storage_unit_failed", error=str(exc))
            raise StorageFailureError(f"The store rejected a write: {exc}") from exc
        return result

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageFailureError(f"Commit failed: {exc}") from exc

    async def rollback(self) -> None:
        await self.session.rollback()

    # --- daily activities ---

    async def get_activity_by_date(self, day: date) -> DailyActivityRecord | None:
        model = await self.session.get(DailyActivityModel, day)
        return _activity_from_model(model) if model is not None else None

    async def upsert_activity(self, record: DailyActivityRecord) -> None:
        values: dict[str, Any] = {name: getattr(record, name) for name in ACTIVITY_METRIC_FIELDS}
        values["activities"] = [dict(a) for a in record.activities]

        model = await self.session.get(DailyActivityModel, record.date)
        if model is None:
            self.session.add(DailyActivityModel(day=record.date, **values))
        else:
            for name, value in values.items():
                setattr(model, name, value)
        await self.session.flush()

    # --- weights ---

    async def get_weight_by_date(self, day: date) -> WeightRecord | None:
        model = await self.session.get(WeightModel, day)
        return _weight_from_model(model) if model is not None else None

    async def upsert_weight(self, record: WeightRecord) -> None:
        values = {
            "weight_kg": record.weight_kg,
            "body_fat_pct": record.body_fat_pct,
            "bone_mass_kg": record.bone_mass_kg,
            "bmr_kcal": record.bmr_kcal,
            "measured_at": record.measured_at,
            "source": record.source.value,
        }
        model = await self.session.get(WeightModel, record.date)
        if model is None:
            self.session.add(WeightModel(day=record.date, **values))
        else:
            for name, value in values.items():
                setattr(model, name, value)
        await self.session.flush()

    # --- intraday samples ---

    async def replace_samples(
        self, kind: SampleKind, day: date, sample_day: IntradaySampleDay
    ) -> None:
        """Replace the whole stored series for (kind, day)."""
        table = SAMPLE_TABLES[kind]
        samples = [s.model_dump() for s in sample_day.samples]
        model = await self.session.get(table, day)
        if model is None:
            self.session.add(
                table(day=day, samples=samples, sample_count=len(samples), stats=sample_day.stats)
            )
        else:
            model.samples = samples
            model.sample_count = len(samples)
            model.stats = sample_day.stats
        await self.session.flush()

    async def get_samples(self, kind: SampleKind, day: date) -> IntradaySampleDay | None:
        model = await self.session.get(SAMPLE_TABLES[kind], day)
        if model is None:
            return None
        sample_model = SAMPLE_MODELS[kind]
        return IntradaySampleDay(
            kind=kind,
            date=model.day,
            samples=[sample_model.model_validate(s) for s in model.samples],
            stats=dict(model.stats or {}),
        )

    async def delete_samples_older_than(self, kind: SampleKind, cutoff: date) -> int:
        """Delete every stored day strictly before `cutoff`. Returns the day count."""
        table = SAMPLE_TABLES[kind]
        result = await self.session.execute(delete(table).where(table.day < cutoff))
        await self.session.flush()
        return result.rowcount or 0

    async def list_sample_dates(self, kind: SampleKind) -> list[date]:
        table = SAMPLE_TABLES[kind]
        result = await self.session.execute(select(table.day).order_by(table.day))
        return list(result.scalars().all())

    async def sample_stats(self, kind: SampleKind) -> dict[str, Any]:
        table = SAMPLE_TABLES[kind]
        result = await self.session.execute(
            select(
                func.count().label("days"),
                func.coalesce(func.sum(table.sample_count), 0).label("samples"),
                func.min(table.day).label("first_date"),
                func.max(table.day).label("last_date"),
            )
        )
        row = result.one()
        return {
            "days": row.days,
            "samples": int(row.samples),
            "first_date": row.first_date,
            "last_date": row.last_date,
        }
