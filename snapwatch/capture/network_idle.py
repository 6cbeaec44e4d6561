"""Network idle detection for one rendering session.

The monitor counts in-flight requests on a Playwright ``BrowserContext`` (or
anything else exposing ``on``/``remove_listener`` with the ``request``,
``requestfinished`` and ``requestfailed`` events) and resolves a single future
once the count has sat at ``max_inflight`` for ``idle_window`` seconds. A
hard cap bounds the wait for pages that never go quiet (long polling,
streaming); reaching it is a degraded success, not an error.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

HARD_CAP_FACTOR = 5

REQUEST_STARTED = "request"
REQUEST_FINISHED = "requestfinished"
REQUEST_FAILED = "requestfailed"


class IdleOutcome(str, Enum):
    IDLE = "idle"
    HARD_CAP = "hard_cap"


class NetworkIdleMonitor:
    """Single-use idle detector. Use as an async context manager.

    Listeners are attached on ``start()`` and detached exactly once, either
    when the signal fires or when the monitor is closed, whichever comes
    first. Closing before the signal fires cancels it.
    """

    def __init__(
        self,
        session: Any,
        idle_window: float,
        max_inflight: int = 0,
        hard_cap: Optional[float] = None,
    ):
        self.session = session
        self.idle_window = idle_window
        self.max_inflight = max_inflight
        self.hard_cap = hard_cap if hard_cap is not None else idle_window * HARD_CAP_FACTOR
        self.inflight = 0
        self._idle_timer: Optional[asyncio.TimerHandle] = None
        self._cap_timer: Optional[asyncio.TimerHandle] = None
        self._signal: Optional[asyncio.Future] = None
        self._attached = False
        self._handlers = {
            REQUEST_STARTED: self._on_request_started,
            REQUEST_FINISHED: self._on_request_done,
            REQUEST_FAILED: self._on_request_done,
        }

    @property
    def attached(self) -> bool:
        return self._attached

    def start(self) -> asyncio.Future:
        if self._signal is not None:
            raise RuntimeError("NetworkIdleMonitor is single-use")
        loop = asyncio.get_running_loop()
        self._signal = loop.create_future()
        for event, handler in self._handlers.items():
            self.session.on(event, handler)
        self._attached = True
        self._cap_timer = loop.call_later(self.hard_cap, self._fire, IdleOutcome.HARD_CAP)
        # nothing may be in flight at all once the page has loaded
        self._check_idle()
        return self._signal

    async def wait(self) -> IdleOutcome:
        signal = self._signal if self._signal is not None else self.start()
        return await signal

    def close(self) -> None:
        """Detach listeners and cancel timers. Idempotent."""
        self._cancel_idle_timer()
        if self._cap_timer is not None:
            self._cap_timer.cancel()
            self._cap_timer = None
        if self._attached:
            self._attached = False
            for event, handler in self._handlers.items():
                self.session.remove_listener(event, handler)
        if self._signal is not None and not self._signal.done():
            self._signal.cancel()

    async def __aenter__(self) -> "NetworkIdleMonitor":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def _on_request_started(self, _request: Any) -> None:
        self.inflight += 1
        if self.inflight > self.max_inflight:
            self._cancel_idle_timer()

    def _on_request_done(self, _request: Any) -> None:
        self.inflight = max(self.inflight - 1, 0)
        self._check_idle()

    def _check_idle(self) -> None:
        if self.inflight > self.max_inflight or self._signal is None or self._signal.done():
            return
        if self._idle_timer is not None:
            # already quiet; keep measuring from when it got quiet
            return
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self.idle_window, self._fire, IdleOutcome.IDLE)

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _fire(self, outcome: IdleOutcome) -> None:
        if self._signal is None or self._signal.done():
            return
        if outcome is IdleOutcome.HARD_CAP:
            logger.debug("Network never idled (%d in flight); hard cap of %.1fs reached",
                         self.inflight, self.hard_cap)
        self._signal.set_result(outcome)
        self.close()


async def wait_for_network_idle(
    session: Any,
    idle_window: float,
    max_inflight: int = 0,
    hard_cap: Optional[float] = None,
) -> IdleOutcome:
    """Wait until ``session`` is network idle; listeners are released on every exit path."""
    async with NetworkIdleMonitor(session, idle_window, max_inflight, hard_cap) as monitor:
        return await monitor.wait()
