"""Audit rotation — archive old chain executions to zip files and prune them.

Rotation is best effort: every failure is logged and swallowed so that it
can never change the outcome of a hook run.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
import zipfile
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from hookchain.audit import ChainExecution
from hookchain.audit_store import chain_ids_before, get_chain, prune_before
from hookchain.config import DEFAULT_RETENTION

logger = logging.getLogger(__name__)

MARKER_NAME = ".last-rotation"
ROTATION_INTERVAL = 3600.0
ARCHIVE_MEMBER = "audit.json"


@dataclass(frozen=True)
class RotationConfig:
    retention: float = DEFAULT_RETENTION
    archive_dir: Path = Path("archives")
    throttle_dir: Path = Path(".")

    @classmethod
    def for_db(cls, db_path: str | Path, retention: float = DEFAULT_RETENTION) -> RotationConfig:
        """Archives and the throttle marker live in ``archives/`` next to the database."""
        archive_dir = Path(db_path).parent / "archives"
        return cls(retention=retention, archive_dir=archive_dir, throttle_dir=archive_dir)


@dataclass(frozen=True)
class ArchiveInfo:
    path: Path
    name: str
    size: int
    mtime: datetime


def _should_rotate(marker: Path) -> bool:
    try:
        mtime = marker.stat().st_mtime
    except OSError:
        return True
    return time.time() - mtime >= ROTATION_INTERVAL


def _touch_marker(marker: Path) -> None:
    try:
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()
    except OSError as e:
        logger.warning("rotation: touch marker %s: %s", marker, e)


def export_entries(conn: sqlite3.Connection, cutoff: datetime) -> list[ChainExecution]:
    """Chain executions older than *cutoff*, oldest first, with hook results."""
    entries: list[ChainExecution] = []
    for chain_id in chain_ids_before(conn, cutoff):
        chain = get_chain(conn, chain_id)
        if chain is not None:
            entries.append(chain)
    return entries


def write_archive(path: Path, entries: list[ChainExecution]) -> None:
    """Write *entries* as ``audit.json`` inside a zip at *path*, atomically."""
    tmp_path = path.with_name(path.name + ".tmp")
    payload = json.dumps([e.to_dict() for e in entries], indent=2) + "\n"
    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(ARCHIVE_MEMBER, payload)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def maybe_rotate(conn: sqlite3.Connection | None, cfg: RotationConfig) -> Path | None:
    """Export entries older than the retention window and prune them.

    Runs at most once per hour, tracked by a marker file in
    ``cfg.throttle_dir``. The marker is touched before any work so that a
    failing rotation is not retried by every subsequent invocation.

    Returns the archive path when one was written.
    """
    if conn is None:
        return None

    marker = Path(cfg.throttle_dir) / MARKER_NAME
    if not _should_rotate(marker):
        logger.debug("rotation throttled")
        return None
    _touch_marker(marker)

    cutoff = datetime.now(UTC) - timedelta(seconds=cfg.retention)
    try:
        entries = export_entries(conn, cutoff)
    except sqlite3.Error as e:
        logger.warning("rotation: export entries failed: %s", e)
        return None
    if not entries:
        logger.debug("rotation: no entries to archive")
        return None

    archive_dir = Path(cfg.archive_dir)
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    archive_path = archive_dir / f"audit-{stamp}.zip"
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
        write_archive(archive_path, entries)
    except OSError as e:
        logger.warning("rotation: write archive failed: %s", e)
        return None

    try:
        pruned = prune_before(conn, cutoff)
    except sqlite3.Error as e:
        logger.warning("rotation: prune failed (archive already written): %s", e)
        return archive_path

    logger.info("rotation complete: archived=%d pruned=%d archive=%s", len(entries), pruned, archive_path)
    return archive_path


def list_archives(archive_dir: str | Path) -> list[ArchiveInfo]:
    """Zip archives in *archive_dir*, newest first. Missing dir yields ``[]``."""
    directory = Path(archive_dir)
    if not directory.is_dir():
        return []

    archives: list[ArchiveInfo] = []
    for entry in directory.iterdir():
        if entry.suffix != ".zip" or not entry.is_file():
            continue
        try:
            st = entry.stat()
        except OSError:
            continue
        archives.append(
            ArchiveInfo(
                path=entry,
                name=entry.name,
                size=st.st_size,
                mtime=datetime.fromtimestamp(st.st_mtime, tz=UTC),
            )
        )
    archives.sort(key=lambda a: a.mtime, reverse=True)
    return archives
