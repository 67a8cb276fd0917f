"""
Tracking page screenshot capture.
"""

from trackproof.capture.screenshot import (
    CaptureResult,
    PlaywrightScreenshotCapture,
    ScreenshotCapture,
)

__all__ = ["CaptureResult", "PlaywrightScreenshotCapture", "ScreenshotCapture"]
