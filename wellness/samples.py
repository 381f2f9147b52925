"""Intraday sample storage with a fixed retention window.

A (kind, date) series is only ever replaced wholesale: partial merges of
high-frequency samples are never meaningful. Invalid samples are dropped
before storing, and a series with nothing valid left stores nothing.

Retention: a day is purged once its date is strictly older than
`today - retention_days`. Cleanup is idempotent.
"""

import math
from collections.abc import Iterable
from datetime import date, timedelta
from typing import Any

import structlog

from shared.config import settings
from shared.metrics import intraday_days_purged_total, intraday_days_stored_total
from wellness.domain.models import (
    HeartRateSample,
    IntradaySampleDay,
    SampleKind,
    SleepStageInterval,
    SleepStageType,
    StepsSample,
)
from wellness.repository import JournalRepository

logger = structlog.get_logger()

MIN_BPM = 20
MAX_BPM = 250
_STAGE_CODES = frozenset(SleepStageType)


def _finite(*values: float) -> bool:
    return all(isinstance(v, (int, float)) and math.isfinite(v) for v in values)


def _valid_heart_rate(s: HeartRateSample) -> bool:
    return _finite(s.timestamp_ms, s.bpm) and MIN_BPM <= s.bpm <= MAX_BPM


def _valid_sleep_stage(s: SleepStageInterval) -> bool:
    return (
        _finite(s.start_ms, s.end_ms)
        and s.stage in _STAGE_CODES
        and s.end_ms > s.start_ms
    )


def _valid_steps(s: StepsSample) -> bool:
    return _finite(s.timestamp_ms, s.count) and s.count >= 0


_VALIDATORS = {
    SampleKind.HEART_RATE: _valid_heart_rate,
    SampleKind.SLEEP_STAGES: _valid_sleep_stage,
    SampleKind.STEPS: _valid_steps,
}


def heart_rate_stats(samples: list[HeartRateSample]) -> dict[str, Any]:
    bpms = [s.bpm for s in samples]
    return {
        "min_bpm": min(bpms),
        "max_bpm": max(bpms),
        "avg_bpm": round(sum(bpms) / len(bpms)),
    }


def steps_stats(samples: list[StepsSample]) -> dict[str, Any]:
    counts = [s.count for s in samples]
    return {"total_steps": sum(counts), "max_steps": max(counts)}


def sleep_stage_stats(samples: list[SleepStageInterval]) -> dict[str, Any]:
    buckets = {
        SleepStageType.LIGHT: "light_ms",
        SleepStageType.DEEP: "deep_ms",
        SleepStageType.REM: "rem_ms",
        SleepStageType.AWAKE: "awake_ms",
        SleepStageType.AWAKE_IN_BED: "awake_ms",
    }
    stats: dict[str, Any] = {"light_ms": 0, "deep_ms": 0, "rem_ms": 0, "awake_ms": 0}
    for s in samples:
        bucket = buckets.get(SleepStageType(s.stage))
        if bucket:
            stats[bucket] += s.duration_ms
    sleep_start = min(s.start_ms for s in samples)
    sleep_end = max(s.end_ms for s in samples)
    stats.update(sleep_start=sleep_start, sleep_end=sleep_end, total_ms=sleep_end - sleep_start)
    return stats


_STATS = {
    SampleKind.HEART_RATE: heart_rate_stats,
    SampleKind.SLEEP_STAGES: sleep_stage_stats,
    SampleKind.STEPS: steps_stats,
}


def build_sample_day(kind: SampleKind, day: date, series: Iterable) -> IntradaySampleDay | None:
    """Drop invalid samples and attach summary stats. None if nothing valid remains."""
    samples = list(series)
    valid = [s for s in samples if _VALIDATORS[kind](s)]
    if len(valid) < len(samples):
        logger.warning(
            "invalid_samples_dropped",
            kind=kind.value,
            date=str(day),
            dropped=len(samples) - len(valid),
        )
    if not valid:
        return None
    return IntradaySampleDay(kind=kind, date=day, samples=valid, stats=_STATS[kind](valid))


class IntradaySampleManager:
    def __init__(self, repo: JournalRepository):
        self.repo = repo

    async def store_samples(
        self, kind: SampleKind, day: date, series: Iterable
    ) -> IntradaySampleDay | None:
        """Replace the stored series for (kind, day). Returns what was stored."""
        sample_day = build_sample_day(kind, day, series)
        if sample_day is None:
            logger.warning("sample_day_skipped", kind=kind.value, date=str(day))
            return None

        await self.repo.run_unit(lambda: self.repo.replace_samples(kind, day, sample_day))
        intraday_days_stored_total.labels(kind=kind.value).inc()
        logger.debug(
            "sample_day_stored", kind=kind.value, date=str(day), samples=sample_day.sample_count
        )
        return sample_day

    async def cleanup_old_samples(
        self, kind: SampleKind, retention_days: int | None = None, today: date | None = None
    ) -> int:
        """Purge days strictly older than `today - retention_days`. Returns days removed."""
        if retention_days is None:
            retention_days = settings.sample_retention_days
        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        cutoff = (today or date.today()) - timedelta(days=retention_days)

        purged = await self.repo.run_unit(lambda: self.repo.delete_samples_older_than(kind, cutoff))
        if purged:
            intraday_days_purged_total.labels(kind=kind.value).inc(purged)
        logger.info("samples_purged", kind=kind.value, cutoff=str(cutoff), days=purged)
        return purged

    async def cleanup_all(
        self, retention_days: int | None = None, today: date | None = None
    ) -> dict[SampleKind, int]:
        return {
            kind: await self.cleanup_old_samples(kind, retention_days, today) for kind in SampleKind
        }

    async def sample_summary(self, kind: SampleKind) -> dict[str, Any]:
        stats = await self.repo.sample_stats(kind)
        days = stats["days"]
        return {
            "kind": kind.value,
            "total_days": days,
            "total_samples": stats["samples"],
            "avg_samples_per_day": round(stats["samples"] / days) if days else 0,
            "first_date": stats["first_date"],
            "last_date": stats["last_date"],
        }
