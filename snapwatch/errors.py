"""Error taxonomy for the snapshot pipeline.

Every failure a single target can hit is a ``SnapshotError`` subclass with a
stable ``kind``. The orchestrator converts them into error results at the
per-target boundary; nothing here is allowed to abort a batch.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    LOAD_ERROR = "load_error"
    CRASH_ERROR = "crash_error"
    DIMENSION_MISMATCH = "dimension_mismatch"
    TIMED_OUT = "timed_out"
    UNEXPECTED = "unexpected"


class SnapshotError(Exception):
    """Base class for per-target pipeline failures."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class LoadError(SnapshotError):
    """Navigation failed (DNS, TLS, connection refused, HTTP error status)."""

    kind = ErrorKind.LOAD_ERROR

    def __init__(self, code: str, description: str, url: str):
        self.code = code
        self.description = description
        self.url = url
        super().__init__(f"Failed to load URL: {url}, Error: {description} ({code})")


class CrashError(SnapshotError):
    """The rendering context went away while a capture was in progress."""

    kind = ErrorKind.CRASH_ERROR

    def __init__(self, url: str, reason: str = "page crashed"):
        self.url = url
        self.reason = reason
        super().__init__(f"Rendering context destroyed for {url}: {reason}")


class DimensionMismatchError(SnapshotError):
    kind = ErrorKind.DIMENSION_MISMATCH

    def __init__(self, baseline_size: tuple[int, int], candidate_size: tuple[int, int]):
        self.baseline_size = baseline_size
        self.candidate_size = candidate_size
        super().__init__(
            "Image dimensions differ: baseline %dx%d, candidate %dx%d"
            % (baseline_size + candidate_size)
        )


class CaptureTimeout(SnapshotError):
    """The per-target wall-clock budget ran out."""

    kind = ErrorKind.TIMED_OUT

    def __init__(self, budget_seconds: float, stage: Optional[str] = None):
        self.budget_seconds = budget_seconds
        self.stage = stage
        where = f" during {stage}" if stage else ""
        super().__init__(f"Timed out after {budget_seconds:g}s{where}")
