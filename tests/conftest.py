"""Pytest configuration and shared fixtures."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from snapwatch.diff.raster import RasterBuffer, encode_png
from snapwatch.models.config import SnapshotConfig, ViewportConfig
from snapwatch.models.snapshot import Target


# ============================================================================
# Raster helpers
# ============================================================================


def make_raster(width: int = 8, height: int = 6, color=(255, 255, 255, 255)) -> RasterBuffer:
    """Solid-colour RGBA raster."""
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[...] = color
    return RasterBuffer(width=width, height=height, pixels=pixels)


def paint(raster: RasterBuffer, box: tuple[int, int, int, int], color=(0, 0, 0, 255)) -> RasterBuffer:
    """Copy of ``raster`` with the (x0, y0, x1, y1) box filled."""
    pixels = raster.pixels.copy()
    x0, y0, x1, y1 = box
    pixels[y0:y1, x0:x1] = color
    return RasterBuffer(width=raster.width, height=raster.height, pixels=pixels)


def png_bytes(raster: RasterBuffer) -> bytes:
    return encode_png(raster)


# ============================================================================
# Playwright fakes
# ============================================================================


class FakeEmitter:
    """Minimal stand-in for Playwright's event emitter (on / remove_listener)."""

    def __init__(self) -> None:
        self.listeners: dict[str, list[Callable]] = defaultdict(list)

    def on(self, event: str, handler: Callable) -> None:
        self.listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners[event].remove(handler)

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self.listeners[event]):
            handler(payload)

    def listener_count(self, *events: str) -> int:
        events = events or tuple(self.listeners)
        return sum(len(self.listeners[e]) for e in events)


class FakePage(FakeEmitter):
    def __init__(self, screenshot_png: bytes) -> None:
        super().__init__()
        response = Mock()
        response.status = 200
        response.status_text = "OK"
        self.goto = AsyncMock(return_value=response)
        self.screenshot = AsyncMock(return_value=screenshot_png)


class FakeContext(FakeEmitter):
    def __init__(self, page: FakePage) -> None:
        super().__init__()
        self.page = page
        self.new_page = AsyncMock(return_value=page)
        self.close = AsyncMock()


async def hang(*args, **kwargs):
    """An awaitable that never completes on its own."""
    await asyncio.Event().wait()


@pytest.fixture
def raster() -> RasterBuffer:
    return make_raster(16, 12)


@pytest.fixture
def fake_page(raster: RasterBuffer) -> FakePage:
    return FakePage(png_bytes(raster))


@pytest.fixture
def fake_context(fake_page: FakePage) -> FakeContext:
    return FakeContext(fake_page)


@pytest.fixture
def fake_browser(fake_context: FakeContext) -> AsyncMock:
    browser = AsyncMock()
    browser.new_context = AsyncMock(return_value=fake_context)
    return browser


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def snapshot_config(tmp_path: Path) -> SnapshotConfig:
    """Config with short timings so tests run quickly."""
    return SnapshotConfig(
        storage_dir=str(tmp_path / "data"),
        viewport=ViewportConfig(width=16, height=12),
        idle_window_ms=20,
        hard_cap_factor=5,
        target_timeout_ms=2000,
    )


@pytest.fixture
def target() -> Target:
    return Target.from_url("https://example.com")


def frame_time(offset_ms: int = 0) -> datetime:
    return datetime(2026, 10, 18, 9, 15, 2, tzinfo=timezone.utc) + timedelta(milliseconds=offset_ms)
