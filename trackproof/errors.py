"""
Exception types for the tracking evidence pipeline.

Precondition errors fail fast without creating records. Attempt errors carry
a kind that decides whether the orchestrator retries. Store guards protect
the append-only evidence trail.
"""

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trackproof.models.evidence import TrackingExtraction


class TrackproofError(Exception):
    """Base class for all pipeline errors."""


# =============================================================================
# Precondition errors
# =============================================================================


class UnsupportedCarrierError(TrackproofError):
    """No adapter is registered for the requested carrier."""

    def __init__(self, carrier: str):
        self.carrier = carrier
        super().__init__(f"Unsupported carrier: {carrier}")


class LeaseConflictError(TrackproofError):
    """A live lease already exists for the tracking key."""

    def __init__(self, tracking_number: str, carrier: str):
        self.tracking_number = tracking_number
        self.carrier = carrier
        super().__init__(f"Sync already in progress for {carrier} {tracking_number}")


# =============================================================================
# Attempt errors
# =============================================================================


class AttemptErrorKind(StrEnum):
    """Why a capture attempt failed"""

    TIMEOUT = "timeout"  # Carrier page or browser did not respond in time
    NAVIGATION_FAILED = "navigation_failed"  # Page could not be loaded
    BLOCKED = "blocked"  # Anti-automation detection, needs a human
    MODEL_ERROR = "model_error"  # Vision model call failed
    MALFORMED_RESPONSE = "malformed_response"  # Vision output did not parse
    LOW_CONFIDENCE = "low_confidence"  # Vision reading below threshold
    CANCELLED = "cancelled"  # Caller cancelled the sync
    LEASE_LOST = "lease_lost"  # Lease expired and was reclaimed mid-run
    ABANDONED = "abandoned"  # Left unfinished by a crashed worker
    INTERNAL = "internal"  # Unexpected error (storage, bug)


RETRYABLE_KINDS = frozenset(
    {
        AttemptErrorKind.TIMEOUT,
        AttemptErrorKind.NAVIGATION_FAILED,
        AttemptErrorKind.MODEL_ERROR,
    }
)


class AttemptError(TrackproofError):
    """Base class for errors raised while running one attempt."""

    def __init__(self, kind: AttemptErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class CaptureError(AttemptError):
    """Screenshot capture failed (timeout, navigation_failed, blocked)."""


class ExtractionError(AttemptError):
    """Vision extraction failed (model_error, malformed_response, low_confidence)."""

    def __init__(
        self,
        kind: AttemptErrorKind,
        message: str,
        extraction: "TrackingExtraction | None" = None,
    ):
        super().__init__(kind, message)
        self.extraction = extraction


class AttemptCancelled(AttemptError):
    """The sync was cancelled while an attempt was running."""

    def __init__(self, message: str = "Sync cancelled"):
        super().__init__(AttemptErrorKind.CANCELLED, message)


class LowConfidenceError(ExtractionError):
    """Extraction succeeded but confidence is below the threshold."""

    def __init__(self, extraction: "TrackingExtraction", threshold: float):
        self.threshold = threshold
        super().__init__(
            AttemptErrorKind.LOW_CONFIDENCE,
            f"confidence {extraction.confidence:.2f} below {threshold:.2f}",
            extraction=extraction,
        )


# =============================================================================
# Evidence store guards
# =============================================================================


class RecordNotFoundError(TrackproofError):
    """Evidence record does not exist."""

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Evidence record not found: {record_id}")


class InvalidTransitionError(TrackproofError):
    """Write attempted against a record not in the required state."""

    def __init__(self, record_id: int, current: str, attempted: str):
        self.record_id = record_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Evidence record {record_id} is {current}, cannot apply {attempted}"
        )
