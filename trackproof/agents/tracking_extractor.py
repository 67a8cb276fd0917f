"""
Tracking Extractor Agent

This agent reads a carrier tracking page screenshot and extracts structured
tracking status (status, location, ETA, scan events) for evidence records.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

from google.adk.agents.llm_agent import Agent
from google.adk.runners import InMemoryRunner
from google.genai.types import Blob, Content, Part
from pydantic import BaseModel, Field, ValidationError

from trackproof.config import DEFAULT_MODEL, MIN_TRACKING_CONFIDENCE
from trackproof.errors import AttemptErrorKind, ExtractionError, LowConfidenceError
from trackproof.models.evidence import TrackingEventData, TrackingExtraction
from trackproof.utils.image import detect_image_mime_type

logger = logging.getLogger(__name__)


# Output schema for the agent
class ExtractedTrackingData(BaseModel):
    """Tracking information read from a carrier page screenshot"""

    status: str = Field(
        description="Tracking status as displayed, e.g. 'In Transit', 'Delivered'"
    )
    current_location: str = Field(description="City, State or full address")
    estimated_delivery: Optional[str] = Field(
        default=None, description="Estimated delivery date YYYY-MM-DD, or null"
    )
    last_update: Optional[str] = Field(
        default=None, description="Latest scan time YYYY-MM-DD HH:MM:SS"
    )
    events: list[TrackingEventData] = Field(
        default_factory=list, description="Scan history, newest first"
    )
    confidence_score: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Confidence in extraction (0-1)",
    )


def convert_extracted_to_extraction(
    extracted: ExtractedTrackingData, raw: dict
) -> TrackingExtraction:
    """Convert agent output to the pipeline's TrackingExtraction."""
    return TrackingExtraction(
        status=extracted.status,
        location=extracted.current_location,
        eta=extracted.estimated_delivery,
        last_update=extracted.last_update,
        events=extracted.events,
        confidence=extracted.confidence_score,
        raw=raw,
    )


tracking_extractor_agent = Agent(
    name="tracking_extractor",
    description=(
        "Extracts shipment tracking status from carrier tracking page screenshots."
    ),
    instruction="""You are a tracking data extraction AI. You receive a screenshot of a
carrier tracking page (UPS, FedEx, USPS, DHL, LTL freight carriers).

Extract:
- status: the headline tracking status exactly as the carrier shows it
- current_location: the latest scan location ("City, ST" when available)
- estimated_delivery: the estimated/scheduled delivery date as YYYY-MM-DD, or null
- last_update: timestamp of the latest scan as YYYY-MM-DD HH:MM:SS
- events: every visible scan event with timestamp, location and description

## Confidence Scoring
Rate your confidence (0.0 to 1.0):
- 0.9-1.0: Tracking details clearly visible and legible
- 0.7-0.8: Details visible but partially cut off or ambiguous
- 0.0-0.6: Page shows an error, a login wall, a cookie banner covering the
  details, or no tracking information

Never invent values that are not visible on the page.
Return only the JSON object, no markdown formatting.
""",
    output_schema=ExtractedTrackingData,
    output_key="tracking",
    model=DEFAULT_MODEL,
)


class VisionExtractor(ABC):
    """Turns a tracking page image into structured tracking data."""

    @abstractmethod
    async def extract(
        self, image_bytes: bytes, carrier: str, tracking_number: str
    ) -> TrackingExtraction:
        """
        Extract tracking data from a screenshot.

        Raises:
            ExtractionError: kind model_error or malformed_response
            LowConfidenceError: reading is usable but below threshold
        """
        pass


class GeminiVisionExtractor(VisionExtractor):
    """Vision extraction through the ADK tracking extractor agent."""

    def __init__(
        self,
        agent: Agent = tracking_extractor_agent,
        min_confidence: float = MIN_TRACKING_CONFIDENCE,
        user_id: str = "trackproof",
    ):
        self.runner = InMemoryRunner(agent=agent, app_name="tracking-extractor")
        self.min_confidence = min_confidence
        self.user_id = user_id

    async def extract(
        self, image_bytes: bytes, carrier: str, tracking_number: str
    ) -> TrackingExtraction:
        prompt = (
            f"Extract tracking information for {carrier} tracking number "
            f"{tracking_number} from this screenshot."
        )
        mime_type = detect_image_mime_type(image_bytes)
        content = Content(
            role="user",
            parts=[
                Part(text=prompt),
                Part(inline_data=Blob(data=image_bytes, mime_type=mime_type)),
            ],
        )

        try:
            result_text = await self._run(content)
        except Exception as e:
            raise ExtractionError(
                AttemptErrorKind.MODEL_ERROR, f"Vision model call failed: {e}"
            ) from e

        if not result_text:
            raise ExtractionError(
                AttemptErrorKind.MODEL_ERROR, "No result from tracking extractor agent"
            )

        extraction = self.parse_response(result_text)

        logger.info(
            "Extracted tracking data: carrier=%s, status=%s, confidence=%.2f",
            carrier,
            extraction.status,
            extraction.confidence,
        )

        if extraction.confidence < self.min_confidence:
            raise LowConfidenceError(extraction, self.min_confidence)

        return extraction

    async def _run(self, content: Content) -> str:
        session = await self.runner.session_service.create_session(
            app_name=self.runner.app_name,
            user_id=self.user_id,
        )

        result_text = ""
        async for event in self.runner.run_async(
            user_id=self.user_id,
            session_id=session.id,
            new_message=content,
        ):
            if event.content and event.content.parts:
                for part in event.content.parts:
                    if part.text:
                        result_text = part.text
        return result_text

    @staticmethod
    def parse_response(result_text: str) -> TrackingExtraction:
        """
        Parse the agent's JSON text into a TrackingExtraction.

        Raises:
            ExtractionError: kind malformed_response if the text is not valid
                JSON matching ExtractedTrackingData
        """
        try:
            raw = json.loads(result_text)
        except json.JSONDecodeError as e:
            raise ExtractionError(
                AttemptErrorKind.MALFORMED_RESPONSE, f"Invalid JSON from model: {e}"
            ) from e

        if not isinstance(raw, dict):
            raise ExtractionError(
                AttemptErrorKind.MALFORMED_RESPONSE, "Model output is not a JSON object"
            )

        try:
            extracted = ExtractedTrackingData.model_validate(raw)
        except ValidationError as e:
            raise ExtractionError(
                AttemptErrorKind.MALFORMED_RESPONSE,
                f"Model output failed validation: {e.error_count()} errors",
            ) from e

        return convert_extracted_to_extraction(extracted, raw)


__all__ = [
    "ExtractedTrackingData",
    "GeminiVisionExtractor",
    "VisionExtractor",
    "convert_extracted_to_extraction",
    "tracking_extractor_agent",
]
