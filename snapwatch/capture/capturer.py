"""Snapshot capturer — load a page in a throwaway context, wait for quiet, grab a frame."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Optional, TypeVar

from playwright.async_api import Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from snapwatch.diff.raster import RasterBuffer, decode_png
from snapwatch.errors import CaptureTimeout, CrashError, LoadError
from snapwatch.models.config import SnapshotConfig
from snapwatch.models.snapshot import Target
from snapwatch.utils.browser import create_capture_context, viewport_from_config

from .deadline import Deadline
from .network_idle import IdleOutcome, wait_for_network_idle

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NET_ERROR = re.compile(r"net::(ERR_[A-Z0-9_]+)")


class CaptureState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOAD_FAILED = "load_failed"
    CRASHED = "crashed"
    LOADED = "loaded"
    WAITING_NETWORK_IDLE = "waiting_network_idle"
    CAPTURING = "capturing"
    DONE = "done"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    CaptureState.LOAD_FAILED,
    CaptureState.CRASHED,
    CaptureState.DONE,
    CaptureState.TIMED_OUT,
    CaptureState.CANCELLED,
})


@dataclass
class CapturedFrame:
    target: Target
    raster: RasterBuffer
    png: bytes
    captured_at: datetime
    idle_outcome: IdleOutcome


def load_error_from(error: PlaywrightError, url: str) -> LoadError:
    """Translate a Playwright navigation error into a LoadError with a net:: code."""
    message = getattr(error, "message", None) or str(error)
    match = _NET_ERROR.search(message)
    code = match.group(1) if match else "NAVIGATION_FAILED"
    description = message.strip().splitlines()[0] if message.strip() else code
    return LoadError(code, description, url)


class RenderingSession:
    """One ephemeral browser context plus its page.

    Crash detection: a ``crash`` event, or a ``close`` the session did not
    initiate, resolves ``crashed``; ``guard()`` races every awaited step
    against it. ``close()`` is idempotent and is the only place the context
    is destroyed.
    """

    def __init__(self, browser: Browser, config: SnapshotConfig, url: str):
        self.browser = browser
        self.config = config
        self.url = url
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.crashed: Optional[asyncio.Future] = None
        self._closing = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> Page:
        self.crashed = asyncio.get_running_loop().create_future()
        self.context = await create_capture_context(
            self.browser,
            viewport=viewport_from_config(self.config),
            user_agent=self.config.user_agent,
        )
        self.page = await self.context.new_page()
        self.page.on("crash", self._on_crash)
        self.page.on("close", self._on_close)
        return self.page

    def _on_crash(self, _page) -> None:
        self._mark_crashed("page crashed")

    def _on_close(self, _page) -> None:
        if not self._closing:
            self._mark_crashed("page closed unexpectedly")

    def _mark_crashed(self, reason: str) -> None:
        if self.crashed is not None and not self.crashed.done():
            logger.warning("Rendering context for %s lost: %s", self.url, reason)
            self.crashed.set_result(reason)

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the page crashes first."""
        task = asyncio.ensure_future(aw)
        try:
            await asyncio.wait({task, self.crashed}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        if task.done():
            if task.exception() is not None and self.crashed.done():
                raise CrashError(self.url, self.crashed.result()) from task.exception()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise CrashError(self.url, self.crashed.result())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closing = True
        if self.context is None:
            return
        try:
            await self.context.close()
            logger.debug("Closed capture context for %s", self.url)
        except PlaywrightError as e:
            # the browser may already be gone after a crash
            logger.warning("Failed to close capture context for %s: %s", self.url, e)


class SnapshotCapturer:
    """Drives one capture attempt through its states.

    ``Idle → Loading → {LoadFailed | Crashed | Loaded} → WaitingNetworkIdle →
    Capturing → Done``. Whatever the outcome, including cancellation by the
    caller's deadline, the rendering context is closed exactly once before
    ``capture()`` returns or raises.
    """

    def __init__(self, browser: Browser, config: SnapshotConfig):
        self.browser = browser
        self.config = config
        self.state = CaptureState.IDLE
        self.session: Optional[RenderingSession] = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, target: Target, state: CaptureState) -> None:
        logger.debug("[%s] %s -> %s", target.slug, self.state.value, state.value)
        self.state = state

    async def capture(self, target: Target, deadline: Optional[Deadline] = None) -> CapturedFrame:
        deadline = deadline or Deadline(self.config.target_timeout_seconds)
        self.state = CaptureState.IDLE
        session = RenderingSession(self.browser, self.config, target.url)
        self.session = session

        self._transition(target, CaptureState.LOADING)
        try:
            await deadline.run(session.open(), "context creation")
            await self._load(session, target, deadline)
            self._transition(target, CaptureState.LOADED)

            self._transition(target, CaptureState.WAITING_NETWORK_IDLE)
            outcome = await deadline.run(
                session.guard(wait_for_network_idle(
                    session.context,
                    idle_window=self.config.idle_window_seconds,
                    max_inflight=self.config.max_inflight,
                    hard_cap=self.config.hard_cap_seconds,
                )),
                "network idle",
            )
            if outcome is IdleOutcome.HARD_CAP:
                logger.info("[%s] network did not settle, capturing after hard cap", target.slug)

            self._transition(target, CaptureState.CAPTURING)
            png = await deadline.run(
                session.guard(session.page.screenshot(
                    type="png",
                    full_page=self.config.full_page,
                    animations="disabled",
                    caret="hide",
                    timeout=0,
                )),
                "frame capture",
            )
            captured_at = datetime.now(timezone.utc)
            raster = await deadline.run(asyncio.to_thread(decode_png, png), "decode")
            self._transition(target, CaptureState.DONE)
            return CapturedFrame(
                target=target,
                raster=raster,
                png=png,
                captured_at=captured_at,
                idle_outcome=outcome,
            )
        except LoadError:
            self._transition(target, CaptureState.LOAD_FAILED)
            raise
        except CrashError:
            self._transition(target, CaptureState.CRASHED)
            raise
        except CaptureTimeout:
            self._transition(target, CaptureState.TIMED_OUT)
            raise
        except asyncio.CancelledError:
            self._transition(target, CaptureState.CANCELLED)
            raise
        finally:
            if not self.finished:
                logger.debug("[%s] capture aborted in state %s", target.slug, self.state.value)
            await session.close()

    async def _load(self, session: RenderingSession, target: Target, deadline: Deadline) -> None:
        try:
            response = await deadline.run(
                session.guard(session.page.goto(target.url, wait_until="load", timeout=0)),
                "navigation",
            )
        except PlaywrightError as e:
            # navigation can reject before the crash event is delivered
            if "crash" in str(e).lower():
                raise CrashError(target.url, str(e)) from e
            raise load_error_from(e, target.url) from e

        if response is not None and response.status >= 400:
            if self.config.fail_on_http_error:
                raise LoadError(str(response.status), response.status_text or "HTTP error", target.url)
            logger.warning("[%s] HTTP %d for %s", target.slug, response.status, target.url)
