"""
Tracking sync and evidence API routes.

Sync endpoints run the capture pipeline and return its result value. An
unsupported carrier or a sync already in progress is reported in the result
body, not as an HTTP error. Evidence endpoints read the append-only trail.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from trackproof.db import DatabaseConnection
from trackproof.errors import RecordNotFoundError
from trackproof.models.evidence import (
    EvidenceListResponse,
    ProcessingStatus,
    TrackingEvidenceRecord,
)
from trackproof.models.sync import (
    BatchSelector,
    BatchSyncResult,
    CancelRequest,
    SyncResult,
    SyncTarget,
)
from trackproof.sync.evidence_store import EvidenceStore
from trackproof.sync.orchestrator import SyncOrchestrator

router = APIRouter(prefix="/tracking")


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


def get_store(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> EvidenceStore:
    return orchestrator.store


# =============================================================================
# Sync
# =============================================================================


@router.post("/sync", response_model=SyncResult)
async def sync_tracking(
    request: SyncTarget,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResult:
    """
    Capture fresh tracking evidence for one tracking number.

    Args:
        request: shipment_id (optional), tracking_number, carrier

    Returns:
        SyncResult (success=false for failures, unsupported carriers and
        syncs already in progress)

    Raises:
        400: Blank tracking number
        503: Database not available
    """
    _check_db_available()

    try:
        return await orchestrator.sync_one(
            request.shipment_id, request.tracking_number, request.carrier
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Tracking sync failed: {str(e)}",
        )


@router.post("/sync-batch", response_model=BatchSyncResult)
async def sync_tracking_batch(
    request: BatchSelector,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> BatchSyncResult:
    """
    Sync many shipments with bounded concurrency.

    Body lists `shipments` explicitly and/or a `filter` for the shipment
    selector. Per-item failures are reported in `results`.
    """
    _check_db_available()

    if not request.shipments and request.filter is None:
        raise HTTPException(
            status_code=400,
            detail="Provide shipments or a filter",
        )

    try:
        return await orchestrator.sync_batch(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Batch sync failed: {str(e)}",
        )


@router.post("/cancel")
async def cancel_sync(
    request: CancelRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Cancel an in-flight sync handled by this instance."""
    cancelled = orchestrator.cancel(request.tracking_number, request.carrier)
    return {"cancelled": cancelled}


# =============================================================================
# Evidence
# =============================================================================


@router.get("/history", response_model=EvidenceListResponse)
async def get_history(
    shipment_id: str | None = Query(default=None, description="Shipment reference"),
    tracking_number: str | None = Query(default=None, description="Tracking number"),
    limit: int = Query(default=10, ge=1, le=100),
    store: EvidenceStore = Depends(get_store),
) -> EvidenceListResponse:
    """
    Evidence history for a shipment or tracking number, newest first.

    Raises:
        400: Neither shipment_id nor tracking_number given
    """
    _check_db_available()

    if not shipment_id and not tracking_number:
        raise HTTPException(
            status_code=400,
            detail="shipment_id or tracking_number is required",
        )

    try:
        records = store.history(
            shipment_id=shipment_id, tracking_number=tracking_number, limit=limit
        )
        return EvidenceListResponse(records=records, total=len(records))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get history: {str(e)}",
        )


@router.get("/latest", response_model=TrackingEvidenceRecord)
async def get_latest(
    shipment_id: str | None = Query(default=None, description="Shipment reference"),
    tracking_number: str | None = Query(default=None, description="Tracking number"),
    store: EvidenceStore = Depends(get_store),
) -> TrackingEvidenceRecord:
    """
    Most recent evidence record for a shipment or tracking number.

    Raises:
        400: Neither shipment_id nor tracking_number given
        404: No evidence yet
    """
    _check_db_available()

    if tracking_number:
        record = store.latest_for_tracking(tracking_number)
    elif shipment_id:
        record = store.latest_for_shipment(shipment_id)
    else:
        raise HTTPException(
            status_code=400,
            detail="shipment_id or tracking_number is required",
        )

    if record is None:
        raise HTTPException(
            status_code=404,
            detail="No tracking evidence found",
        )
    return record


@router.get("/records", response_model=EvidenceListResponse)
async def list_records(
    status: str | None = Query(default=None, description="Filter by processing status"),
    limit: int = Query(default=50, ge=1, le=500),
    store: EvidenceStore = Depends(get_store),
) -> EvidenceListResponse:
    """List evidence records across all shipments, newest first."""
    _check_db_available()

    processing_status = None
    if status:
        try:
            processing_status = ProcessingStatus(status)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status: {status}. Valid values: {[s.value for s in ProcessingStatus]}",
            )

    records = store.list_records(status=processing_status, limit=limit)
    return EvidenceListResponse(records=records, total=len(records))


@router.get("/records/{record_id}", response_model=TrackingEvidenceRecord)
async def get_record(
    record_id: int,
    store: EvidenceStore = Depends(get_store),
) -> TrackingEvidenceRecord:
    """
    Get one evidence record.

    Raises:
        404: Record not found
    """
    _check_db_available()

    try:
        return store.get(record_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
