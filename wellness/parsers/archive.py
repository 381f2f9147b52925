"""Unwrap a Health Connect backup down to its SQLite database file.

Backups arrive as a bare database, a zip (as exported to Google Drive), a
gzip or a tar. The container is detected from its magic bytes, never from
its file name. Archive members are streamed into a private temporary
directory under their base name only, so a crafted member path cannot
escape it.
"""

import gzip
import shutil
import tarfile
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath

import structlog

from shared.config import settings
from shared.exceptions import MalformedInputError

logger = structlog.get_logger()

SQLITE_MAGIC = b"SQLite format 3\x00"
ZIP_MAGIC = b"PK\x03\x04"
GZIP_MAGIC = b"\x1f\x8b"
TAR_MAGIC_OFFSET = 257

DATABASE_SUFFIXES = (".db", ".sqlite", ".sqlite3")
ARCHIVE_SUFFIXES = (".zip", ".gz", ".tgz", ".tar")


def sniff_container(path: Path) -> str:
    """Return 'sqlite', 'zip', 'gzip', 'tar' or 'unknown'."""
    with path.open("rb") as fh:
        head = fh.read(512)
    if head.startswith(SQLITE_MAGIC):
        return "sqlite"
    if head.startswith(ZIP_MAGIC):
        return "zip"
    if head.startswith(GZIP_MAGIC):
        return "gzip"
    if head[TAR_MAGIC_OFFSET : TAR_MAGIC_OFFSET + 5] == b"ustar":
        return "tar"
    return "unknown"


def _is_ignored(name: str) -> bool:
    parts = PurePosixPath(name).parts
    return any(p == "__MACOSX" or p.startswith(".") for p in parts)


def pick_member(names: list[str]) -> str | None:
    """First database member, else the first nested archive. Hidden and macOS junk are ignored."""
    candidates = [n for n in names if not n.endswith("/") and not _is_ignored(n)]
    for suffixes in (DATABASE_SUFFIXES, ARCHIVE_SUFFIXES):
        for name in candidates:
            if name.lower().endswith(suffixes):
                return name
    return None


def _safe_target(dest_dir: Path, member_name: str) -> Path:
    dest_dir = dest_dir.resolve()
    target = (dest_dir / PurePosixPath(member_name).name).resolve()
    if target.parent != dest_dir:
        raise MalformedInputError(f"Unsafe path in archive: {member_name}")
    return target


def _extract_zip(path: Path, dest_dir: Path) -> Path:
    with zipfile.ZipFile(path) as zf:
        member = pick_member(zf.namelist())
        if member is None:
            raise MalformedInputError("zip archive contains no database file")
        target = _safe_target(dest_dir, member)
        with zf.open(member) as src, target.open("wb") as dst:
            shutil.copyfileobj(src, dst)
    return target


def _extract_tar(path: Path, dest_dir: Path) -> Path:
    with tarfile.open(path, "r:*") as tf:
        members = {m.name: m for m in tf.getmembers() if m.isfile()}
        member = pick_member(list(members))
        if member is None:
            raise MalformedInputError("tar archive contains no database file")
        target = _safe_target(dest_dir, member)
        src = tf.extractfile(members[member])
        if src is None:
            raise MalformedInputError(f"tar member {member} is not readable")
        with src, target.open("wb") as dst:
            shutil.copyfileobj(src, dst)
    return target


def _gunzip(path: Path, dest_dir: Path) -> Path:
    stem = path.name[:-3] if path.name.lower().endswith(".gz") else f"{path.name}.unpacked"
    target = _safe_target(dest_dir, stem)
    with gzip.open(path, "rb") as src, target.open("wb") as dst:
        shutil.copyfileobj(src, dst)
    return target


_EXTRACTORS = {"zip": _extract_zip, "tar": _extract_tar, "gzip": _gunzip}


@contextmanager
def open_snapshot(path: str | Path, max_depth: int | None = None) -> Iterator[Path]:
    """Yield the path of a readable SQLite database inside `path`.

    Temporary extractions are removed when the context exits.
    """
    max_depth = max_depth or settings.snapshot_max_unwrap_depth
    current = Path(path)
    if not current.is_file():
        raise MalformedInputError(f"Snapshot file not found: {current.name}")

    with tempfile.TemporaryDirectory(prefix="snapshot-") as tmp:
        for depth in range(max_depth + 1):
            try:
                kind = sniff_container(current)
            except OSError as exc:
                raise MalformedInputError(f"Snapshot file is not readable: {exc}") from exc

            if kind == "sqlite":
                logger.info("snapshot_unwrapped", database=current.name, depth=depth)
                yield current
                return
            if kind == "unknown":
                raise MalformedInputError(
                    f"{current.name} is not a SQLite database, zip, gzip or tar archive"
                )
            if depth == max_depth:
                break

            level_dir = Path(tmp) / str(depth)
            level_dir.mkdir()
            try:
                current = _EXTRACTORS[kind](current, level_dir)
            except (zipfile.BadZipFile, tarfile.TarError, gzip.BadGzipFile, EOFError) as exc:
                raise MalformedInputError(f"Corrupt {kind} archive: {exc}") from exc

        raise MalformedInputError(f"Archive nesting deeper than {max_depth} levels")
