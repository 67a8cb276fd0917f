"""
Cloud Tasks / Cloud Scheduler endpoint handlers.

Cloud Scheduler and Cloud Tasks send HTTP POST requests to these endpoints
with task payloads. A non-2xx response makes Cloud Tasks retry the task, so
only unexpected errors return 500; sync failures are reported in the body.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from trackproof.db import DatabaseConnection
from trackproof.models.task import ReapStaleTask, SyncBatchTask, SyncTrackingTask
from trackproof.sync.orchestrator import SyncOrchestrator
from trackproof.worker.handlers import (
    handle_reap_stale,
    handle_sync_batch,
    handle_sync_tracking,
)

router = APIRouter()


def _check_db_available():
    """Check if database is available, raise 503 if not."""
    if not DatabaseConnection.is_initialized():
        raise HTTPException(
            status_code=503,
            detail="Database not available",
        )


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Orchestrator built at startup."""
    return request.app.state.orchestrator


@router.post("/sync-tracking")
async def sync_tracking_task(
    task: SyncTrackingTask,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Process single tracking sync task.

    Args:
        task: Tracking sync task payload

    Returns:
        dict: Processing status and sync result
    """
    _check_db_available()

    try:
        print(f"📦 Processing tracking sync for {task.carrier} {task.tracking_number}")

        result = await handle_sync_tracking(
            orchestrator,
            tracking_number=task.tracking_number,
            carrier=task.carrier,
            shipment_id=task.shipment_id,
        )

        print(f"✅ Tracking sync finished: {result['outcome']}")

        return {
            "status": "success",
            "tracking_number": task.tracking_number,
            "result": result,
        }

    except Exception as e:
        print(f"❌ Tracking sync failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Tracking sync failed: {str(e)}",
        )


@router.post("/sync-batch")
async def sync_batch_task(
    task: SyncBatchTask,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Process batch tracking sync task.

    Args:
        task: Batch payload with explicit shipments and/or a filter

    Returns:
        dict: Processing status and per-item results
    """
    _check_db_available()

    if not task.shipments and task.filter is None:
        raise HTTPException(
            status_code=400,
            detail="Provide shipments or a filter",
        )

    try:
        print(f"📦 Processing batch sync: {len(task.shipments)} shipments")

        result = await handle_sync_batch(orchestrator, task.shipments, task.filter)

        print(
            f"✅ Batch sync completed: {result['succeeded']}/{result['total']} succeeded"
        )

        return {
            "status": "success",
            "result": result,
        }

    except Exception as e:
        print(f"❌ Batch sync failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Batch sync failed: {str(e)}",
        )


@router.post("/reap-stale")
async def reap_stale_task(
    task: ReapStaleTask,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Fail evidence records abandoned by crashed workers.

    Args:
        task: Sweep payload with the age threshold

    Returns:
        dict: Processing status and failed record ids
    """
    _check_db_available()

    try:
        result = handle_reap_stale(orchestrator.store, task.older_than_seconds)
        return {
            "status": "success",
            "result": result,
        }

    except Exception as e:
        print(f"❌ Stale sweep failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Stale sweep failed: {str(e)}",
        )
