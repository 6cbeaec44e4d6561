"""Snapshot history — the per-target, append-only record of captured frames.

Layout::

    <root>/<target slug>/<timestamp>.png        snapshot
    <root>/<target slug>/<timestamp>.diff.png   diff against the previous snapshot

Timestamps are UTC ISO-8601 with ``:`` and ``.`` replaced by ``-`` so they
are valid path segments everywhere and sort chronologically as plain text.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from snapwatch.diff.raster import RasterBuffer, load_raster
from snapwatch.models.snapshot import SnapshotRecord, Target
from snapwatch.utils.files import write_bytes_atomic

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".png"
DIFF_SUFFIX = ".diff.png"
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
_SNAPSHOT_NAME = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z)\.png$")


def format_timestamp(moment: datetime) -> str:
    """``2026-10-18T09:15:02.431Z`` becomes ``2026-10-18T09-15-02-431Z``."""
    moment = moment.astimezone(timezone.utc)
    return f"{moment.strftime(_TIMESTAMP_FORMAT)}-{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    base, millis = value.rstrip("Z").rsplit("-", 1)
    moment = datetime.strptime(base, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    return moment + timedelta(milliseconds=int(millis))


class SnapshotHistory:
    """Reads and appends snapshot records under ``root``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def target_dir(self, target: Target) -> Path:
        return self.root / target.slug

    def records(self, target: Target) -> list[SnapshotRecord]:
        """All complete snapshots for ``target``, oldest first.

        Diff artifacts and in-progress temporary files never match the
        snapshot name pattern, so they are not part of history.
        """
        directory = self.target_dir(target)
        if not directory.is_dir():
            return []
        records = []
        for path in directory.iterdir():
            match = _SNAPSHOT_NAME.match(path.name)
            if match and path.is_file():
                records.append(SnapshotRecord(target=target, timestamp=match.group(1), raster_path=path))
        records.sort(key=lambda r: r.timestamp)
        return records

    def latest(self, target: Target) -> Optional[SnapshotRecord]:
        records = self.records(target)
        return records[-1] if records else None

    def append(self, target: Target, png: bytes, captured_at: datetime) -> SnapshotRecord:
        """Durably store a captured frame and return its record.

        If the timestamp would not sort after the newest existing snapshot
        (two captures within the same millisecond, or clock skew) it is moved
        forward one millisecond at a time until it does.
        """
        latest = self.latest(target)
        moment = captured_at
        timestamp = format_timestamp(moment)
        while latest is not None and timestamp <= latest.timestamp:
            moment += timedelta(milliseconds=1)
            timestamp = format_timestamp(moment)

        path = self.target_dir(target) / f"{timestamp}{SNAPSHOT_SUFFIX}"
        write_bytes_atomic(path, png)
        logger.debug("Stored snapshot %s", path)
        return SnapshotRecord(target=target, timestamp=timestamp, raster_path=path)

    def select_baseline(self, target: Target) -> Optional[SnapshotRecord]:
        """The snapshot just before the newest one, or None with fewer than two."""
        records = self.records(target)
        if len(records) < 2:
            return None
        return records[-2]

    def load_baseline(self, target: Target) -> Optional[RasterBuffer]:
        record = self.select_baseline(target)
        return load_raster(record.raster_path) if record else None

    def prune(self, target: Target, keep: int) -> int:
        """Delete all but the newest ``keep`` snapshots and their diff artifacts."""
        if keep < 1:
            raise ValueError("keep must be at least 1")
        stale = self.records(target)[:-keep]
        for record in stale:
            record.raster_path.unlink(missing_ok=True)
            record.diff_artifact_path.unlink(missing_ok=True)
        if stale:
            logger.info("Pruned %d snapshot(s) for %s", len(stale), target.url)
        return len(stale)
