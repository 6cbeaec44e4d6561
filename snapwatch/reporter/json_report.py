"""JSON report output for a comparison batch."""

from __future__ import annotations

import json
from pathlib import Path

from snapwatch.models.snapshot import ComparisonResult, utc_now_iso


def build_batch_report(results: list[ComparisonResult]) -> dict:
    failed = sum(1 for r in results if r.status == "error")
    return {
        "generated_at": utc_now_iso(),
        "total": len(results),
        "succeeded": len(results) - failed,
        "failed": failed,
        "changed": sum(1 for r in results if r.has_diff and r.diff_pixel_count > 0),
        "results": [r.model_dump(mode="json") for r in results],
    }


def write_batch_report(results: list[ComparisonResult], output_path: Path) -> None:
    """Write a machine-readable JSON report."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(build_batch_report(results), f, indent=2, default=str)
