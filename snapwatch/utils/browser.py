"""Browser helpers — launch the headless engine and create capture contexts."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

from snapwatch.models.config import SnapshotConfig

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch Chromium for snapshot capture."""
    return await playwright.chromium.launch(
        headless=headless,
        args=[
            "--disable-blink-features=AutomationControlled",
            "--hide-scrollbars",
        ],
    )


async def create_capture_context(
    browser: Browser,
    viewport: dict,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create an isolated context with settings pinned for repeatable rendering.

    Locale, timezone, colour scheme and motion preference are fixed so two
    captures of an unchanged page render the same pixels.
    """
    return await browser.new_context(
        viewport=viewport,
        device_scale_factor=1,
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale="en-US",
        timezone_id="UTC",
        color_scheme="light",
        reduced_motion="reduce",
        extra_http_headers={
            "Accept-Language": "en-US,en;q=0.9",
        },
    )


def viewport_from_config(config: SnapshotConfig) -> dict:
    return {"width": config.viewport.width, "height": config.viewport.height}
