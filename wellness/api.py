"""FastAPI router for wellness imports and imported data.

Endpoints:
- POST /api/v1/imports/garmin/preview          (multipart `files`)
- POST /api/v1/imports/garmin                  (multipart `files`)
- POST /api/v1/imports/health-connect/preview  (multipart `file`)
- POST /api/v1/imports/health-connect          (multipart `file`)
- POST /api/v1/samples/cleanup
- GET  /api/v1/activities/{day}
- GET  /api/v1/weights/{day}
- GET  /api/v1/samples/{kind}
- GET  /api/v1/samples/{kind}/{day}
"""

import asyncio
import shutil
import tempfile
import time
from datetime import UTC, date, datetime
from pathlib import Path, PurePath
from typing import Any

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.database import get_session
from shared.exceptions import NotFoundError, UnsupportedSampleKindError
from shared.metrics import api_requests_total, api_response_duration_seconds
from shared.middleware import request_id_var
from wellness.domain.models import ImportPreview, SampleKind
from wellness.pipeline import ImportOrchestrator
from wellness.repository import JournalRepository
from wellness.samples import IntradaySampleManager

router = APIRouter(prefix="/api/v1")


# --- Response helpers ---


def _meta() -> dict[str, Any]:
    return {
        "request_id": request_id_var.get(""),
        "timestamp": datetime.now(UTC).isoformat(),
        "api_version": settings.api_version,
    }


def _observe(endpoint: str, method: str, status_code: int, start_time: float) -> None:
    api_requests_total.labels(endpoint=endpoint, method=method, status_code=str(status_code)).inc()
    api_response_duration_seconds.labels(endpoint=endpoint).observe(time.monotonic() - start_time)


def _sample_kind(kind: str) -> SampleKind:
    try:
        return SampleKind(kind)
    except ValueError:
        raise UnsupportedSampleKindError(kind, {k.value for k in SampleKind}) from None


async def _read_csv_uploads(files: list[UploadFile]) -> list[tuple[str, bytes]]:
    return [(f.filename or f"upload-{i}.csv", await f.read()) for i, f in enumerate(files)]


async def _save_upload(upload: UploadFile, directory: str) -> Path:
    # Client file names are untrusted; keep the base name only
    target = Path(directory) / (PurePath(upload.filename or "snapshot").name or "snapshot")
    with target.open("wb") as out:
        await asyncio.to_thread(shutil.copyfileobj, upload.file, out)
    return target


# --- Garmin CSV ---


@router.post("/imports/garmin/preview")
async def preview_garmin_import(
    files: list[UploadFile] = File(...),
    session: AsyncSession = Depends(get_session),
):
    """Parse Garmin Connect CSV exports and report what an import would write."""
    start_time = time.monotonic()
    orchestrator = ImportOrchestrator(session)
    preview = await orchestrator.parse_garmin(await _read_csv_uploads(files))
    orchestrator.abandon()

    _observe("garmin_preview", "POST", 200, start_time)
    return {"data": preview.model_dump(mode="json"), "meta": _meta()}


@router.post("/imports/garmin")
async def import_garmin(
    response: Response,
    files: list[UploadFile] = File(...),
    session: AsyncSession = Depends(get_session),
):
    """Import Garmin Connect CSV exports.

    HTTP status codes:
    - 201: at least one record was added
    - 200: everything merged into existing days or was skipped
    """
    start_time = time.monotonic()
    orchestrator = ImportOrchestrator(session)
    preview = await orchestrator.parse_garmin(await _read_csv_uploads(files))
    summary = await orchestrator.confirm()

    response.status_code = 201 if summary.added_count else 200
    _observe("garmin_import", "POST", response.status_code, start_time)
    return {"data": {**summary.to_response(), "preview": _preview_brief(preview)}, "meta": _meta()}


# --- Health Connect snapshot ---


@router.post("/imports/health-connect/preview")
async def preview_health_connect_import(
    file: UploadFile = File(...),
    since: date | None = Query(None, description="Ignore snapshot data before this date"),
    session: AsyncSession = Depends(get_session),
):
    """Read a Health Connect backup (db, zip, gzip or tar) and report what an import would write."""
    start_time = time.monotonic()
    with tempfile.TemporaryDirectory(prefix="upload-") as tmp:
        path = await _save_upload(file, tmp)
        orchestrator = ImportOrchestrator(session)
        preview = await orchestrator.parse_snapshot(path, since=since)
        orchestrator.abandon()

    _observe("health_connect_preview", "POST", 200, start_time)
    return {"data": preview.model_dump(mode="json"), "meta": _meta()}


@router.post("/imports/health-connect")
async def import_health_connect(
    response: Response,
    file: UploadFile = File(...),
    since: date | None = Query(None, description="Ignore snapshot data before this date"),
    session: AsyncSession = Depends(get_session),
):
    """Import a Health Connect backup, including intraday samples."""
    start_time = time.monotonic()
    with tempfile.TemporaryDirectory(prefix="upload-") as tmp:
        path = await _save_upload(file, tmp)
        orchestrator = ImportOrchestrator(session)
        preview = await orchestrator.parse_snapshot(path, since=since)
        summary = await orchestrator.confirm()

    response.status_code = 201 if summary.added_count else 200
    _observe("health_connect_import", "POST", response.status_code, start_time)
    return {"data": {**summary.to_response(), "preview": _preview_brief(preview)}, "meta": _meta()}


def _preview_brief(preview: ImportPreview) -> dict[str, Any]:
    return {
        "total_days": preview.total_days,
        "first_date": preview.first_date.isoformat() if preview.first_date else None,
        "last_date": preview.last_date.isoformat() if preview.last_date else None,
    }


# --- Intraday samples ---


@router.post("/samples/cleanup")
async def cleanup_samples(
    retention_days: int = Query(settings.sample_retention_days, ge=1, le=3650),
    session: AsyncSession = Depends(get_session),
):
    """Purge intraday sample days older than the retention window."""
    start_time = time.monotonic()
    manager = IntradaySampleManager(JournalRepository(session))
    purged = await manager.cleanup_all(retention_days=retention_days)

    _observe("samples_cleanup", "POST", 200, start_time)
    return {
        "data": {
            "retention_days": retention_days,
            "purged_days": {kind.value: count for kind, count in purged.items()},
        },
        "meta": _meta(),
    }


@router.get("/samples/{kind}")
async def get_sample_summary(kind: str, session: AsyncSession = Depends(get_session)):
    """Stored day and sample counts for one sample kind."""
    start_time = time.monotonic()
    sample_kind = _sample_kind(kind)
    summary = await IntradaySampleManager(JournalRepository(session)).sample_summary(sample_kind)

    _observe("sample_summary", "GET", 200, start_time)
    return {"data": summary, "meta": _meta()}


@router.get("/samples/{kind}/{day}")
async def get_samples(kind: str, day: date, session: AsyncSession = Depends(get_session)):
    start_time = time.monotonic()
    sample_kind = _sample_kind(kind)
    sample_day = await JournalRepository(session).get_samples(sample_kind, day)
    if sample_day is None:
        raise NotFoundError(f"No {sample_kind.value} samples stored for {day.isoformat()}")

    _observe("samples", "GET", 200, start_time)
    return {
        "data": {**sample_day.model_dump(mode="json"), "sample_count": sample_day.sample_count},
        "meta": _meta(),
    }


# --- Imported records ---


@router.get("/activities/{day}")
async def get_activity(day: date, session: AsyncSession = Depends(get_session)):
    start_time = time.monotonic()
    record = await JournalRepository(session).get_activity_by_date(day)
    if record is None:
        raise NotFoundError(f"No activity recorded for {day.isoformat()}")

    _observe("activity", "GET", 200, start_time)
    return {"data": record.model_dump(mode="json"), "meta": _meta()}


@router.get("/weights/{day}")
async def get_weight(day: date, session: AsyncSession = Depends(get_session)):
    start_time = time.monotonic()
    record = await JournalRepository(session).get_weight_by_date(day)
    if record is None:
        raise NotFoundError(f"No weight recorded for {day.isoformat()}")

    _observe("weight", "GET", 200, start_time)
    return {"data": record.model_dump(mode="json"), "meta": _meta()}
