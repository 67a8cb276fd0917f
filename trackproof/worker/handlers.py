"""
Task handlers for Cloud Scheduler / Cloud Tasks processing.

These handlers contain the business logic for processing different task types.
"""

import logging
from datetime import timedelta
from typing import Any

from trackproof.models.sync import BatchSelector, SyncTarget
from trackproof.sync.evidence_store import EvidenceStore
from trackproof.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


async def handle_sync_tracking(
    orchestrator: SyncOrchestrator,
    tracking_number: str,
    carrier: str,
    shipment_id: str | None = None,
) -> dict:
    """
    Handle single tracking sync task.

    Args:
        orchestrator: Sync orchestrator
        tracking_number: Carrier tracking number
        carrier: Carrier name
        shipment_id: External shipment reference

    Returns:
        dict: SyncResult fields
    """
    logger.info(
        "Syncing tracking for shipment_id=%s, carrier=%s, tracking=%s",
        shipment_id,
        carrier,
        tracking_number,
    )

    result = await orchestrator.sync_one(shipment_id, tracking_number, carrier)

    logger.info(
        "Tracking sync finished: outcome=%s, record_id=%s, attempts=%d",
        result.outcome,
        result.record_id,
        result.attempts,
    )
    return result.model_dump(mode="json")


async def handle_sync_batch(
    orchestrator: SyncOrchestrator,
    shipments: list[SyncTarget],
    filter: dict[str, Any] | None = None,
) -> dict:
    """
    Handle batch tracking sync task.

    Scheduled re-syncs usually send only a filter (e.g. every tracked
    shipment not yet delivered); bulk imports send explicit shipments.

    Returns:
        dict: BatchSyncResult fields
    """
    selector = BatchSelector(shipments=shipments, filter=filter)
    logger.info(
        "Batch sync task: %d explicit shipments, filter=%s", len(shipments), filter
    )

    result = await orchestrator.sync_batch(selector)
    return result.model_dump(mode="json")


def handle_reap_stale(store: EvidenceStore, older_than_seconds: int) -> dict:
    """
    Handle stale evidence sweep.

    Records stay pending/processing only while a worker is running them; after
    older_than_seconds they belong to a crashed worker and are failed as
    abandoned.

    Returns:
        dict: Count and ids of failed records
    """
    failed_ids = store.fail_stale(timedelta(seconds=older_than_seconds))
    logger.info("Stale sweep failed %d records", len(failed_ids))
    return {"failed_count": len(failed_ids), "record_ids": failed_ids}
