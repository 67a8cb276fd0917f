"""
Screenshot capture of carrier tracking pages.

The pipeline depends only on the ScreenshotCapture contract. The Playwright
implementation drives headless Chromium and requires the `browser` extra
(`pip install trackproof[browser]` then `playwright install chromium`).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from trackproof.carriers.adapters import CaptureHints
from trackproof.errors import AttemptErrorKind, CaptureError

logger = logging.getLogger(__name__)

# Page text that indicates an anti-automation challenge instead of tracking data
BLOCK_MARKERS = (
    "access denied",
    "unusual traffic",
    "are you a robot",
    "verify you are human",
    "captcha",
)

BLOCK_STATUS_CODES = frozenset({403, 429})


@dataclass
class CaptureResult:
    """Captured tracking page image"""

    image_bytes: bytes
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    content_type: str = "image/png"


class ScreenshotCapture(ABC):
    """Captures a URL to an image."""

    @abstractmethod
    async def capture(
        self, url: str, timeout: float, hints: CaptureHints | None = None
    ) -> CaptureResult:
        """
        Capture a screenshot of url.

        Args:
            url: Page to capture
            timeout: Navigation timeout in seconds
            hints: Carrier-specific wait hints

        Returns:
            CaptureResult with image bytes and capture time

        Raises:
            CaptureError: kind timeout, navigation_failed or blocked
        """
        pass


def looks_blocked(page_text: str) -> bool:
    """Check page text for anti-automation challenge markers."""
    lowered = page_text.lower()
    return any(marker in lowered for marker in BLOCK_MARKERS)


class PlaywrightScreenshotCapture(ScreenshotCapture):
    """Headless Chromium capture via Playwright."""

    def __init__(
        self,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        selector_timeout_ms: int = 10000,
        launch_args: tuple[str, ...] = (
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
        ),
    ):
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.selector_timeout_ms = selector_timeout_ms
        self.launch_args = list(launch_args)

    async def capture(
        self, url: str, timeout: float, hints: CaptureHints | None = None
    ) -> CaptureResult:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError
        from playwright.async_api import async_playwright

        hints = hints or CaptureHints()
        timeout_ms = int(timeout * 1000)

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True, args=self.launch_args)
            try:
                page = await browser.new_page(viewport=self.viewport)

                logger.info("Navigating to %s", url)
                try:
                    response = await page.goto(
                        url, wait_until="networkidle", timeout=timeout_ms
                    )
                except PlaywrightTimeoutError as e:
                    raise CaptureError(AttemptErrorKind.TIMEOUT, str(e)) from e
                except PlaywrightError as e:
                    raise CaptureError(AttemptErrorKind.NAVIGATION_FAILED, str(e)) from e

                if response is not None:
                    if response.status in BLOCK_STATUS_CODES:
                        raise CaptureError(
                            AttemptErrorKind.BLOCKED,
                            f"Carrier returned HTTP {response.status}",
                        )
                    if response.status >= 400:
                        raise CaptureError(
                            AttemptErrorKind.NAVIGATION_FAILED,
                            f"Carrier returned HTTP {response.status}",
                        )

                if hints.wait_selector:
                    try:
                        await page.wait_for_selector(
                            hints.wait_selector, timeout=self.selector_timeout_ms
                        )
                    except PlaywrightTimeoutError:
                        logger.warning(
                            "Wait selector %s not found, continuing anyway",
                            hints.wait_selector,
                        )

                if hints.settle_ms:
                    await page.wait_for_timeout(hints.settle_ms)

                if looks_blocked(await page.inner_text("body")):
                    raise CaptureError(
                        AttemptErrorKind.BLOCKED, "Anti-automation challenge page"
                    )

                try:
                    image_bytes = await page.screenshot(full_page=True, type="png")
                except PlaywrightTimeoutError as e:
                    raise CaptureError(AttemptErrorKind.TIMEOUT, str(e)) from e

                logger.info("Screenshot captured: %d bytes", len(image_bytes))
                return CaptureResult(image_bytes=image_bytes)
            finally:
                await browser.close()
