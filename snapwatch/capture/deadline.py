"""Per-target deadline threaded through every suspension point of a capture."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from snapwatch.errors import CaptureTimeout

T = TypeVar("T")


class Deadline:
    """A wall-clock budget shared by all stages of one target's attempt.

    ``run()`` bounds an awaitable by whatever budget is left. When the budget
    runs out the awaitable is cancelled (``asyncio.wait_for`` waits for it to
    unwind) and ``CaptureTimeout`` is raised naming the stage.
    """

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.budget_seconds = budget_seconds
        self._clock = clock
        self._expires_at = clock() + budget_seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self, stage: Optional[str] = None) -> None:
        if self.expired:
            raise CaptureTimeout(self.budget_seconds, stage)

    async def run(self, aw: Awaitable[T], stage: Optional[str] = None) -> T:
        if self.expired:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise CaptureTimeout(self.budget_seconds, stage)
        try:
            return await asyncio.wait_for(aw, timeout=self.remaining())
        except asyncio.TimeoutError as e:
            raise CaptureTimeout(self.budget_seconds, stage) from e
