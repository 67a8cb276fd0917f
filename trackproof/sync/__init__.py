"""
Tracking sync pipeline.

- SyncOrchestrator: sync_one / sync_batch / cancel
- EvidenceStore: append-only evidence records and screenshot blobs
- LeaseManager: per-tracking-key mutual exclusion with TTL
"""

from trackproof.sync.evidence_store import EvidenceStore
from trackproof.sync.leases import (
    DatabaseLeaseManager,
    InMemoryLeaseManager,
    LeaseHandle,
    LeaseKey,
    LeaseManager,
    build_lease_manager,
)
from trackproof.sync.orchestrator import SyncOrchestrator
from trackproof.sync.reconciliation import (
    LoggingReconciliationPublisher,
    ReconciliationPublisher,
    ShipmentSelector,
    TrackedShipmentSelector,
    WebhookReconciliationPublisher,
    build_publisher,
)
from trackproof.sync.retry import RetryPolicy

__all__ = [
    "DatabaseLeaseManager",
    "EvidenceStore",
    "InMemoryLeaseManager",
    "LeaseHandle",
    "LeaseKey",
    "LeaseManager",
    "LoggingReconciliationPublisher",
    "ReconciliationPublisher",
    "RetryPolicy",
    "ShipmentSelector",
    "SyncOrchestrator",
    "TrackedShipmentSelector",
    "WebhookReconciliationPublisher",
    "build_lease_manager",
    "build_publisher",
]
