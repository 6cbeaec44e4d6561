"""Target, snapshot and comparison result data structures."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from snapwatch.errors import ErrorKind, SnapshotError
from snapwatch.url_utils import slug_from_url

# diff_pixel_count for error results; never a valid count
ERROR_SENTINEL = -1


def utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class Target(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    slug: str

    @classmethod
    def from_url(cls, url: str) -> "Target":
        url = url.strip()
        return cls(url=url, slug=slug_from_url(url))


class SnapshotRecord(BaseModel):
    """One durably written snapshot. Ordered by ``timestamp``."""

    model_config = ConfigDict(frozen=True)

    target: Target
    timestamp: str  # filesystem-safe ISO-8601, sorts chronologically
    raster_path: Path

    @property
    def diff_artifact_path(self) -> Path:
        return self.raster_path.with_name(f"{self.timestamp}.diff.png")


class ComparisonResult(BaseModel):
    url: str
    target: str  # slug
    status: Literal["success", "error"]
    diff_pixel_count: Optional[int] = None
    diff_percentage: Optional[float] = None
    diff_artifact_path: Optional[str] = None
    snapshot_path: Optional[str] = None
    baseline_path: Optional[str] = None
    timestamp: str
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def check_consistency(self) -> "ComparisonResult":
        if self.status == "error":
            if self.error_kind is None:
                raise ValueError("error results need an error_kind")
            if self.diff_pixel_count != ERROR_SENTINEL:
                raise ValueError("error results must carry the sentinel diff_pixel_count")
            if self.diff_percentage is not None or self.diff_artifact_path is not None:
                raise ValueError("error results cannot carry diff data")
            return self

        if self.error_kind is not None:
            raise ValueError("success results cannot carry an error_kind")
        diff_fields = (self.diff_pixel_count, self.diff_percentage, self.diff_artifact_path)
        if any(f is not None for f in diff_fields) and any(f is None for f in diff_fields):
            raise ValueError("diff fields must be set together")
        if self.diff_pixel_count is not None and self.diff_pixel_count < 0:
            raise ValueError("diff_pixel_count must be non-negative")
        return self

    @property
    def has_diff(self) -> bool:
        return self.status == "success" and self.diff_pixel_count is not None

    @classmethod
    def success(
        cls,
        target: Target,
        snapshot_path: Path,
        diff_pixel_count: int | None = None,
        diff_percentage: float | None = None,
        diff_artifact_path: Path | None = None,
        baseline_path: Path | None = None,
    ) -> "ComparisonResult":
        return cls(
            url=target.url,
            target=target.slug,
            status="success",
            diff_pixel_count=diff_pixel_count,
            diff_percentage=diff_percentage,
            diff_artifact_path=str(diff_artifact_path) if diff_artifact_path else None,
            snapshot_path=str(snapshot_path),
            baseline_path=str(baseline_path) if baseline_path else None,
            timestamp=utc_now_iso(),
        )

    @classmethod
    def failure(
        cls,
        target: Target,
        error: BaseException,
        snapshot_path: Path | None = None,
    ) -> "ComparisonResult":
        kind = error.kind if isinstance(error, SnapshotError) else ErrorKind.UNEXPECTED
        return cls(
            url=target.url,
            target=target.slug,
            status="error",
            diff_pixel_count=ERROR_SENTINEL,
            snapshot_path=str(snapshot_path) if snapshot_path else None,
            timestamp=utc_now_iso(),
            error_kind=kind,
            message=str(error) or type(error).__name__,
        )


class TargetList(BaseModel):
    urls: list[str] = Field(default_factory=list)
    last_updated: str = ""


class LatestResults(BaseModel):
    results: dict[str, ComparisonResult] = Field(default_factory=dict)
    last_updated: str = ""
