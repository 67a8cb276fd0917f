from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProcessingStatus(StrEnum):
    """Evidence record lifecycle status"""

    PENDING = "pending"  # Record created, capture not started
    PROCESSING = "processing"  # Capture/extraction running
    COMPLETED = "completed"  # Extraction stored (terminal)
    FAILED = "failed"  # Attempt failed (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class TrackingEventData(BaseModel):
    """Single scan event read off a carrier tracking page"""

    timestamp: Optional[str] = Field(default=None, description="Event timestamp")
    location: Optional[str] = Field(default=None, description="Event location")
    description: Optional[str] = Field(default=None, description="Event description")


class TrackingExtraction(BaseModel):
    """Structured tracking data extracted from a screenshot"""

    status: str = Field(description="Tracking status as shown by the carrier")
    location: str = Field(description="Current or last known location")
    eta: Optional[str] = Field(
        default=None, description="Estimated delivery date (YYYY-MM-DD) if shown"
    )
    last_update: Optional[str] = Field(
        default=None, description="Timestamp of the latest scan"
    )
    events: list[TrackingEventData] = Field(
        default_factory=list, description="Scan history"
    )
    confidence: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Extraction confidence (0-1)"
    )
    raw: dict[str, Any] = Field(
        default_factory=dict, description="Raw model output as returned"
    )


class TrackingEvidenceRecord(BaseModel):
    """
    One capture attempt for a tracking number.

    Records are append-only dispute evidence: the only permitted change is the
    forward transition of processing_status and the fields it unlocks.
    """

    # Identity
    id: int = Field(description="Monotonic record identifier")
    shipment_id: Optional[str] = Field(
        default=None, description="External shipment reference"
    )

    # Attempt inputs
    tracking_number: str = Field(description="Carrier tracking number")
    carrier: str = Field(description="Normalized carrier code")
    carrier_url: str = Field(description="Tracking page URL that was captured")
    sync_run_id: Optional[str] = Field(
        default=None, description="Sync run that produced this attempt"
    )
    attempt_number: int = Field(default=1, description="Attempt index within the run")

    # Captured blob
    screenshot_ref: Optional[str] = Field(
        default=None, description="Blob locator of the screenshot"
    )
    screenshot_sha256: Optional[str] = Field(
        default=None, description="SHA-256 of the screenshot bytes"
    )

    # Extraction (completed only)
    extracted_status: Optional[str] = Field(default=None)
    extracted_location: Optional[str] = Field(default=None)
    extracted_eta: Optional[str] = Field(default=None)
    extracted_details_raw: Optional[dict[str, Any]] = Field(default=None)
    low_confidence: bool = Field(
        default=False, description="Extraction flagged as low confidence"
    )

    # Status
    processing_status: ProcessingStatus = Field(default=ProcessingStatus.PENDING)
    error_kind: Optional[str] = Field(default=None, description="Failure kind")
    error_message: Optional[str] = Field(default=None, description="Failure detail")

    # Timestamps
    captured_at: Optional[datetime] = Field(
        default=None, description="When the screenshot was taken"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Record creation time",
    )
    finished_at: Optional[datetime] = Field(
        default=None, description="When the record reached a terminal state"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 1017,
                "shipment_id": "42",
                "tracking_number": "1Z999AA10123456784",
                "carrier": "UPS",
                "carrier_url": "https://www.ups.com/track?track=yes&trackNums=1Z999AA10123456784",
                "sync_run_id": "9b1f0c7e2d4a4c1b8f3e6a5d7c9b0e1f",
                "attempt_number": 1,
                "screenshot_ref": "gs://evidence/tracking-screenshots/ups/1Z999AA10123456784-1017-1768212000000.png",
                "extracted_status": "In Transit",
                "extracted_location": "Louisville, KY",
                "extracted_eta": "2026-01-14",
                "processing_status": "completed",
                "captured_at": "2026-01-12T10:00:00Z",
                "created_at": "2026-01-12T09:59:58Z",
            }
        }
    )


class ReconciliationEvent(BaseModel):
    """Signal sent to case management when an attempt completes"""

    shipment_id: Optional[str] = Field(description="External shipment reference")
    tracking_number: str = Field(description="Carrier tracking number")
    carrier: str = Field(description="Normalized carrier code")
    record_id: int = Field(description="Evidence record holding the reading")
    extracted_status: str
    extracted_location: str
    extracted_eta: Optional[str] = None
    low_confidence: bool = False
    emitted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


# API Response Models


class EvidenceListResponse(BaseModel):
    """Evidence records, newest first."""

    records: list[TrackingEvidenceRecord] = Field(description="Evidence records")
    total: int = Field(description="Number of records returned")
