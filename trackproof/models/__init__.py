"""
Trackproof data models.

This package contains all Pydantic models for the tracking evidence pipeline.
"""

# Evidence models
from trackproof.models.evidence import (
    EvidenceListResponse,
    ProcessingStatus,
    ReconciliationEvent,
    TrackingEventData,
    TrackingEvidenceRecord,
    TrackingExtraction,
)

# Sync models
from trackproof.models.sync import (
    BatchItemResult,
    BatchSelector,
    BatchSyncResult,
    CancelRequest,
    SyncOutcome,
    SyncResult,
    SyncTarget,
)

# Task models
from trackproof.models.task import ReapStaleTask, SyncBatchTask, SyncTrackingTask

__all__ = [
    # Evidence models
    "EvidenceListResponse",
    "ProcessingStatus",
    "ReconciliationEvent",
    "TrackingEventData",
    "TrackingEvidenceRecord",
    "TrackingExtraction",
    # Sync models
    "BatchItemResult",
    "BatchSelector",
    "BatchSyncResult",
    "CancelRequest",
    "SyncOutcome",
    "SyncResult",
    "SyncTarget",
    # Task models
    "ReapStaleTask",
    "SyncBatchTask",
    "SyncTrackingTask",
]
