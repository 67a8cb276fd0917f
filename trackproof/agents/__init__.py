"""
Trackproof agents.

- tracking_extractor_agent: Reads carrier tracking page screenshots
"""

from trackproof.agents.tracking_extractor import (
    ExtractedTrackingData,
    GeminiVisionExtractor,
    VisionExtractor,
    tracking_extractor_agent,
)

__all__ = [
    "ExtractedTrackingData",
    "GeminiVisionExtractor",
    "VisionExtractor",
    "tracking_extractor_agent",
]
