from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from trackproof.models.evidence import TrackingExtraction


class SyncOutcome(StrEnum):
    """Result of a sync request"""

    COMPLETED = "completed"  # Evidence captured and extracted
    FAILED = "failed"  # Attempts ended in a failed record
    ALREADY_IN_PROGRESS = "already_in_progress"  # Lease held by another sync
    UNSUPPORTED_CARRIER = "unsupported_carrier"  # No adapter for carrier
    CANCELLED = "cancelled"  # Caller cancelled the sync
    ERROR = "error"  # Unexpected error (batch items only)


class SyncTarget(BaseModel):
    """A shipment/tracking-number pair to sync"""

    shipment_id: Optional[str] = Field(
        default=None, description="External shipment reference"
    )
    tracking_number: str = Field(min_length=1, description="Carrier tracking number")
    carrier: str = Field(min_length=1, description="Carrier name (e.g., 'UPS')")


class SyncResult(BaseModel):
    """Result value returned by a single sync"""

    success: bool = Field(description="Whether a completed record was produced")
    outcome: SyncOutcome = Field(description="How the sync ended")
    shipment_id: Optional[str] = Field(default=None)
    tracking_number: str
    carrier: str
    record_id: Optional[int] = Field(
        default=None, description="Last evidence record written by this sync"
    )
    record_ids: list[int] = Field(
        default_factory=list, description="All records written, oldest first"
    )
    attempts: int = Field(default=0, description="Attempts made")
    error: Optional[str] = Field(default=None, description="Error detail")
    error_kind: Optional[str] = Field(default=None, description="Error kind")
    extraction: Optional[TrackingExtraction] = Field(default=None)
    low_confidence: bool = Field(default=False)
    reconciliation_delivered: Optional[bool] = Field(
        default=None,
        description="Whether the reconciliation event was accepted (completed only)",
    )


class BatchSelector(BaseModel):
    """
    Selects shipments for a batch sync.

    Either lists targets explicitly, or passes a filter to the configured
    shipment selector collaborator.
    """

    shipments: list[SyncTarget] = Field(
        default_factory=list, description="Explicit targets"
    )
    filter: Optional[dict[str, Any]] = Field(
        default=None, description="Filter for the shipment selector"
    )


class BatchItemResult(BaseModel):
    """Outcome of one item in a batch sync"""

    shipment_id: Optional[str] = None
    tracking_number: str
    carrier: str
    success: bool
    outcome: SyncOutcome
    record_id: Optional[int] = None
    error: Optional[str] = None


class BatchSyncResult(BaseModel):
    """Heterogeneous per-item results of a batch sync"""

    results: list[BatchItemResult] = Field(default_factory=list)
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None


class CancelRequest(BaseModel):
    """Request body to cancel an in-flight sync."""

    tracking_number: str
    carrier: str
