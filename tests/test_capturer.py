"""Tests for the snapshot capturer: state machine and context teardown."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import UnidentifiedImageError
from playwright.async_api import Error as PlaywrightError

from conftest import hang
from snapwatch.capture.capturer import (
    CaptureState,
    RenderingSession,
    SnapshotCapturer,
    load_error_from,
)
from snapwatch.capture.deadline import Deadline
from snapwatch.capture.network_idle import (
    REQUEST_FAILED,
    REQUEST_FINISHED,
    REQUEST_STARTED,
    IdleOutcome,
)
from snapwatch.errors import CaptureTimeout, CrashError, LoadError

LIFECYCLE_EVENTS = (REQUEST_STARTED, REQUEST_FINISHED, REQUEST_FAILED)


class TestCaptureSuccess:

    @pytest.mark.asyncio
    async def test_returns_decoded_frame(self, fake_browser, fake_context, snapshot_config, target):
        capturer = SnapshotCapturer(fake_browser, snapshot_config)
        frame = await capturer.capture(target)

        assert frame.target == target
        assert frame.raster.size == (16, 12)
        assert frame.png.startswith(b"\x89PNG")
        assert frame.idle_outcome is IdleOutcome.IDLE
        assert frame.captured_at.tzinfo is not None
        assert capturer.state is CaptureState.DONE
        assert capturer.finished

    @pytest.mark.asyncio
    async def test_navigates_and_captures_with_config(self, fake_browser, fake_page, snapshot_config, target):
        snapshot_config.full_page = True
        await SnapshotCapturer(fake_browser, snapshot_config).capture(target)

        fake_page.goto.assert_awaited_once()
        assert fake_page.goto.call_args.args[0] == "https://example.com"
        assert fake_page.goto.call_args.kwargs["wait_until"] == "load"
        shot_kwargs = fake_page.screenshot.call_args.kwargs
        assert shot_kwargs["type"] == "png"
        assert shot_kwargs["full_page"] is True

    @pytest.mark.asyncio
    async def test_fresh_context_uses_viewport(self, fake_browser, snapshot_config, target):
        await SnapshotCapturer(fake_browser, snapshot_config).capture(target)
        kwargs = fake_browser.new_context.call_args.kwargs
        assert kwargs["viewport"] == {"width": 16, "height": 12}

    @pytest.mark.asyncio
    async def test_context_closed_once_and_listeners_released(
        self, fake_browser, fake_context, snapshot_config, target,
    ):
        await SnapshotCapturer(fake_browser, snapshot_config).capture(target)

        fake_context.close.assert_awaited_once()
        assert fake_context.listener_count(*LIFECYCLE_EVENTS) == 0

    @pytest.mark.asyncio
    async def test_waits_for_network_before_capturing(
        self, fake_browser, fake_context, fake_page, snapshot_config, target,
    ):
        loop = asyncio.get_running_loop()

        async def goto_with_trailing_request(*args, **kwargs):
            # an XHR that starts just after load and finishes later
            loop.call_later(0.01, fake_context.emit, REQUEST_STARTED)
            loop.call_later(0.06, fake_context.emit, REQUEST_FINISHED)
            return Mock(status=200)

        png = fake_page.screenshot.return_value
        shot_times = []

        def shoot(**kwargs):
            shot_times.append(loop.time())
            return png

        fake_page.goto = AsyncMock(side_effect=goto_with_trailing_request)
        fake_page.screenshot = AsyncMock(side_effect=shoot)
        start = loop.time()

        await SnapshotCapturer(fake_browser, snapshot_config).capture(target)

        # idle window (20ms) measured from the finish at 60ms
        assert shot_times[0] - start >= 0.075


class TestLoadFailure:

    @pytest.mark.asyncio
    async def test_navigation_error_becomes_load_error(
        self, fake_browser, fake_context, fake_page, snapshot_config, target,
    ):
        fake_page.goto.side_effect = PlaywrightError(
            "net::ERR_NAME_NOT_RESOLVED at https://example.com/"
        )
        capturer = SnapshotCapturer(fake_browser, snapshot_config)

        with pytest.raises(LoadError) as exc_info:
            await capturer.capture(target)

        assert exc_info.value.code == "ERR_NAME_NOT_RESOLVED"
        assert exc_info.value.url == "https://example.com"
        assert capturer.state is CaptureState.LOAD_FAILED
        assert capturer.finished
        fake_context.close.assert_awaited_once()
        fake_page.screenshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_http_error_fails_when_configured(
        self, fake_browser, fake_context, fake_page, snapshot_config, target,
    ):
        snapshot_config.fail_on_http_error = True
        fake_page.goto.return_value = Mock(status=503, status_text="Service Unavailable")

        with pytest.raises(LoadError) as exc_info:
            await SnapshotCapturer(fake_browser, snapshot_config).capture(target)

        assert exc_info.value.code == "503"
        fake_context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_http_error_tolerated_by_default(self, fake_browser, fake_page, snapshot_config, target):
        fake_page.goto.return_value = Mock(status=404, status_text="Not Found")
        frame = await SnapshotCapturer(fake_browser, snapshot_config).capture(target)
        assert frame.raster.size == (16, 12)


class TestCrash:

    @pytest.mark.asyncio
    async def test_crash_during_navigation(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        fake_page.goto = hang
        capturer = SnapshotCapturer(fake_browser, snapshot_config)
        asyncio.get_running_loop().call_later(0.02, fake_page.emit, "crash", fake_page)

        with pytest.raises(CrashError):
            await capturer.capture(target)

        assert capturer.state is CaptureState.CRASHED
        assert capturer.finished
        fake_context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_crash_while_waiting_for_idle(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        snapshot_config.idle_window_ms = 1000
        capturer = SnapshotCapturer(fake_browser, snapshot_config)
        asyncio.get_running_loop().call_later(0.05, fake_page.emit, "crash", fake_page)

        with pytest.raises(CrashError):
            await capturer.capture(target)

        fake_context.close.assert_awaited_once()
        assert fake_context.listener_count(*LIFECYCLE_EVENTS) == 0

    @pytest.mark.asyncio
    async def test_unexpected_page_close_is_a_crash(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        fake_page.goto = hang
        asyncio.get_running_loop().call_later(0.02, fake_page.emit, "close", fake_page)

        with pytest.raises(CrashError) as exc_info:
            await SnapshotCapturer(fake_browser, snapshot_config).capture(target)

        assert "closed unexpectedly" in str(exc_info.value)
        fake_context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_navigation_rejected_by_crash(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        fake_page.goto.side_effect = PlaywrightError("Navigation failed because page crashed!")
        with pytest.raises(CrashError):
            await SnapshotCapturer(fake_browser, snapshot_config).capture(target)
        fake_context.close.assert_awaited_once()


class TestTimeoutAndCancellation:

    @pytest.mark.asyncio
    async def test_deadline_expiry_tears_down(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        fake_page.goto = hang
        capturer = SnapshotCapturer(fake_browser, snapshot_config)

        with pytest.raises(CaptureTimeout) as exc_info:
            await capturer.capture(target, Deadline(0.05))

        assert exc_info.value.stage == "navigation"
        assert capturer.state is CaptureState.TIMED_OUT
        assert capturer.finished
        fake_context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_deadline_expiry_while_waiting_for_idle(
        self, fake_browser, fake_context, snapshot_config, target,
    ):
        snapshot_config.idle_window_ms = 1000

        with pytest.raises(CaptureTimeout) as exc_info:
            await SnapshotCapturer(fake_browser, snapshot_config).capture(target, Deadline(0.05))

        assert exc_info.value.stage == "network idle"
        fake_context.close.assert_awaited_once()
        assert fake_context.listener_count(*LIFECYCLE_EVENTS) == 0

    @pytest.mark.asyncio
    async def test_external_cancellation_tears_down(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        fake_page.goto = hang
        capturer = SnapshotCapturer(fake_browser, snapshot_config)
        task = asyncio.create_task(capturer.capture(target))
        await asyncio.sleep(0.02)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert capturer.state is CaptureState.CANCELLED
        assert capturer.finished
        fake_context.close.assert_awaited_once()


class TestUnexpectedFailure:

    @pytest.mark.asyncio
    async def test_undecodable_frame_still_tears_down(self, fake_browser, fake_context, fake_page, snapshot_config, target):
        fake_page.screenshot.return_value = b"not a png"
        capturer = SnapshotCapturer(fake_browser, snapshot_config)

        with pytest.raises(UnidentifiedImageError):
            await capturer.capture(target)

        assert capturer.state is CaptureState.CAPTURING
        assert not capturer.finished
        fake_context.close.assert_awaited_once()


class TestRenderingSession:

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_browser, fake_context, snapshot_config):
        session = RenderingSession(fake_browser, snapshot_config, "https://example.com")
        await session.open()
        await session.close()
        await session.close()

        fake_context.close.assert_awaited_once()
        assert session.closed

    @pytest.mark.asyncio
    async def test_own_close_is_not_a_crash(self, fake_browser, fake_page, snapshot_config):
        session = RenderingSession(fake_browser, snapshot_config, "https://example.com")
        await session.open()
        await session.close()
        fake_page.emit("close", fake_page)
        assert not session.crashed.done()

    @pytest.mark.asyncio
    async def test_close_before_open_does_nothing(self, fake_browser, snapshot_config):
        session = RenderingSession(fake_browser, snapshot_config, "https://example.com")
        await session.close()
        fake_browser.new_context.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_failure_is_logged_not_raised(self, fake_browser, fake_context, snapshot_config):
        fake_context.close.side_effect = PlaywrightError("Target closed")
        session = RenderingSession(fake_browser, snapshot_config, "https://example.com")
        await session.open()
        await session.close()
        assert session.closed


class TestLoadErrorFrom:

    def test_extracts_net_error_code(self):
        err = load_error_from(
            PlaywrightError("net::ERR_CERT_AUTHORITY_INVALID at https://self-signed.test/\nCall log: ..."),
            "https://self-signed.test/",
        )
        assert err.code == "ERR_CERT_AUTHORITY_INVALID"
        assert "Call log" not in err.description

    def test_unknown_error_gets_generic_code(self):
        err = load_error_from(PlaywrightError("something odd"), "https://example.com")
        assert err.code == "NAVIGATION_FAILED"
        assert err.description == "something odd"
