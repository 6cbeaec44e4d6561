"""Comparison orchestrator — capture, store and diff each target under a deadline."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from playwright.async_api import Browser, async_playwright

from snapwatch.capture.capturer import SnapshotCapturer
from snapwatch.capture.deadline import Deadline
from snapwatch.diff.diff_engine import DiffEngine, DiffResult
from snapwatch.diff.raster import RasterBuffer, load_raster
from snapwatch.errors import SnapshotError
from snapwatch.history.snapshot_history import SnapshotHistory
from snapwatch.models.config import SnapshotConfig
from snapwatch.models.snapshot import ComparisonResult, Target
from snapwatch.storage.result_store import ResultStore
from snapwatch.utils.browser import launch_browser

logger = logging.getLogger(__name__)

BatchListener = Callable[[list[ComparisonResult]], Union[None, Awaitable[None]]]


class _Attempt:
    """What one target's attempt got as far as, for error reporting."""

    def __init__(self) -> None:
        self.snapshot_path: Optional[Path] = None


class ComparisonOrchestrator:
    """Coordinates snapshot capture and comparison for a batch of targets.

    Every target runs under its own ``Deadline``. A failing target becomes an
    error result and the batch moves on; results come back in input order.
    Each target's result is written to the result store as soon as that
    target resolves.
    """

    def __init__(
        self,
        config: SnapshotConfig,
        history: SnapshotHistory,
        store: Optional[ResultStore] = None,
    ):
        self.config = config
        self.history = history
        self.store = store
        self.diff_engine = DiffEngine(config)
        self._listeners: list[BatchListener] = []
        self._target_locks: dict[str, asyncio.Lock] = {}

    def add_batch_listener(self, listener: BatchListener) -> None:
        self._listeners.append(listener)

    async def compare_all(self, targets: list[Target]) -> list[ComparisonResult]:
        """Launch a browser, compare every target and notify batch listeners."""
        start = time.time()
        logger.info("Starting comparison of %d target(s)", len(targets))

        results: list[ComparisonResult] = []
        if targets:
            async with async_playwright() as p:
                logger.debug("Launching Chromium for snapshot capture...")
                browser = await launch_browser(p, headless=self.config.headless)
                try:
                    results = await self.compare_with_browser(browser, targets)
                finally:
                    await browser.close()

        failed = sum(1 for r in results if r.status == "error")
        logger.info(
            "Comparison complete: %d succeeded, %d failed (%.1fs)",
            len(results) - failed, failed, time.time() - start,
        )
        await self._notify(results)
        return results

    async def compare_with_browser(self, browser: Browser, targets: list[Target]) -> list[ComparisonResult]:
        # Each concurrent capture holds a whole browser context in memory
        semaphore = asyncio.Semaphore(self.config.max_parallel_contexts)
        total = len(targets)

        async def _run_one(index: int, target: Target) -> ComparisonResult:
            async with semaphore:
                logger.info("Comparing [%d/%d]: %s", index + 1, total, target.url)
                result = await self.compare_target(browser, target)
                if self.store is not None:
                    try:
                        self.store.record_result(result)
                    except OSError as e:
                        logger.error("Failed to save result for %s: %s", target.url, e)
                return result

        return list(await asyncio.gather(
            *(_run_one(i, t) for i, t in enumerate(targets))
        ))

    async def compare_target(self, browser: Browser, target: Target) -> ComparisonResult:
        """Run one target's attempt. Never raises for per-target failures."""
        lock = self._target_locks.setdefault(target.slug, asyncio.Lock())
        async with lock:
            deadline = Deadline(self.config.target_timeout_seconds)
            attempt = _Attempt()
            try:
                result = await deadline.run(self._attempt(browser, target, deadline, attempt), "comparison")
            except SnapshotError as e:
                logger.warning("[FAIL] %s: %s (%s)", target.url, e, e.kind.value)
                return ComparisonResult.failure(target, e, snapshot_path=attempt.snapshot_path)
            except Exception as e:
                logger.exception("[FAIL] Unexpected error comparing %s", target.url)
                return ComparisonResult.failure(target, e, snapshot_path=attempt.snapshot_path)

            if result.has_diff:
                logger.info("[OK] %s: %d pixels differ (%.2f%%)",
                            target.url, result.diff_pixel_count, result.diff_percentage)
            else:
                logger.info("[OK] %s: first snapshot stored", target.url)
            return result

    async def _attempt(
        self, browser: Browser, target: Target, deadline: Deadline, attempt: _Attempt,
    ) -> ComparisonResult:
        capturer = SnapshotCapturer(browser, self.config)
        frame = await capturer.capture(target, deadline)

        # blocking file and pixel work runs off the event loop, one deadline step each
        record = await deadline.run(
            asyncio.to_thread(self.history.append, target, frame.png, frame.captured_at),
            "persist",
        )
        attempt.snapshot_path = record.raster_path

        baseline = self.history.select_baseline(target)
        if baseline is None:
            return ComparisonResult.success(target, snapshot_path=record.raster_path)

        logger.debug("[%s] diffing %s against %s", target.slug, record.timestamp, baseline.timestamp)
        diff = await deadline.run(
            asyncio.to_thread(self._diff, baseline.raster_path, frame.raster),
            "diff",
        )
        artifact_path = await deadline.run(
            asyncio.to_thread(self.diff_engine.write_artifact, diff, record.diff_artifact_path),
            "persist",
        )
        return ComparisonResult.success(
            target,
            snapshot_path=record.raster_path,
            diff_pixel_count=diff.diff_pixel_count,
            diff_percentage=diff.diff_percentage,
            diff_artifact_path=artifact_path,
            baseline_path=baseline.raster_path,
        )

    def _diff(self, baseline_path: Path, candidate: RasterBuffer) -> DiffResult:
        return self.diff_engine.diff(load_raster(baseline_path), candidate)

    async def _notify(self, results: list[ComparisonResult]) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(results)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning("Batch listener %r failed: %s", listener, e)
