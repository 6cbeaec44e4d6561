"""Service facade — the operations a front end (CLI, UI) needs."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from snapwatch.history.snapshot_history import DIFF_SUFFIX, SnapshotHistory
from snapwatch.models.config import SnapshotConfig
from snapwatch.models.snapshot import ComparisonResult, Target
from snapwatch.orchestrator import BatchListener, ComparisonOrchestrator
from snapwatch.storage.result_store import ResultStore

logger = logging.getLogger(__name__)

SNAPSHOTS_DIR = "snapshots"


class SnapshotService:
    """Wires the result store, snapshot history and orchestrator together."""

    def __init__(self, config: SnapshotConfig):
        self.config = config
        self.storage_dir = config.storage_path
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.snapshots_dir = self.storage_dir / SNAPSHOTS_DIR
        self.store = ResultStore(self.storage_dir)
        self.history = SnapshotHistory(self.snapshots_dir)
        self.orchestrator = ComparisonOrchestrator(config, self.history, self.store)

    def add_target(self, url: str) -> bool:
        return self.store.add_target(url)

    def list_targets(self) -> list[str]:
        return self.store.list_targets()

    def delete_target(self, url: str) -> bool:
        return self.store.delete_target(url)

    def get_latest_results(self) -> dict[str, ComparisonResult]:
        return self.store.latest_results()

    def add_batch_listener(self, listener: BatchListener) -> None:
        self.orchestrator.add_batch_listener(listener)

    async def compare_all(self, urls: Optional[list[str]] = None) -> list[ComparisonResult]:
        """Compare ``urls`` (all registered targets when None), in the given order."""
        if urls is None:
            urls = self.list_targets()
        targets = [Target.from_url(u) for u in urls if u.strip()]
        return await self.orchestrator.compare_all(targets)

    def run_compare_all(self, urls: Optional[list[str]] = None) -> list[ComparisonResult]:
        return asyncio.run(self.compare_all(urls))

    def get_diff_artifact(self, path: str | Path) -> bytes:
        """Read a diff artifact. Only files under the snapshots directory are served."""
        resolved = Path(path).resolve()
        root = self.snapshots_dir.resolve()
        if not resolved.is_relative_to(root) or not resolved.name.endswith(DIFF_SUFFIX):
            raise ValueError(f"Not a diff artifact: {path}")
        if not resolved.is_file():
            raise FileNotFoundError(f"Diff artifact not found: {path}")
        return resolved.read_bytes()

    def snapshot_dir(self, url: str) -> Path:
        return self.history.target_dir(Target.from_url(url))

    def prune(self, url: str, keep: int) -> int:
        return self.history.prune(Target.from_url(url), keep)
