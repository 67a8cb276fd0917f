"""
Evidence repository for database operations.

Handles append-only tracking evidence records. Status changes are
conditional updates guarded on the current status, so a record can only
move forward (pending -> processing -> completed | failed) and terminal
records are never rewritten.
"""

from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import Table, func, select, update

from trackproof.db.repositories.base import BaseRepository
from trackproof.db.tables import tracking_evidence
from trackproof.errors import InvalidTransitionError, RecordNotFoundError
from trackproof.models.evidence import (
    ProcessingStatus,
    TrackingEvidenceRecord,
    TrackingExtraction,
)

UNFINISHED_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EvidenceRepository(BaseRepository[TrackingEvidenceRecord]):
    """Repository for TrackingEvidenceRecord with guarded status transitions."""

    @property
    def table(self) -> Table:
        return tracking_evidence

    def _row_to_model(self, row: Any) -> TrackingEvidenceRecord:
        """Convert database row to TrackingEvidenceRecord model."""
        return TrackingEvidenceRecord(
            id=row.id,
            shipment_id=row.shipment_id,
            tracking_number=row.tracking_number,
            carrier=row.carrier,
            carrier_url=row.carrier_url,
            sync_run_id=row.sync_run_id,
            attempt_number=row.attempt_number or 1,
            screenshot_ref=row.screenshot_ref,
            screenshot_sha256=row.screenshot_sha256,
            extracted_status=row.extracted_status,
            extracted_location=row.extracted_location,
            extracted_eta=row.extracted_eta,
            extracted_details_raw=row.extracted_details_raw,
            low_confidence=bool(row.low_confidence),
            processing_status=ProcessingStatus(row.processing_status),
            error_kind=row.error_kind,
            error_message=row.error_message,
            captured_at=_as_utc(row.captured_at),
            created_at=_as_utc(row.created_at),
            finished_at=_as_utc(row.finished_at),
        )

    def _model_to_dict(self, model: TrackingEvidenceRecord) -> dict:
        """Convert record model to database dict (id is database-assigned)."""
        return {
            "shipment_id": model.shipment_id,
            "tracking_number": model.tracking_number,
            "carrier": model.carrier,
            "carrier_url": model.carrier_url,
            "sync_run_id": model.sync_run_id,
            "attempt_number": model.attempt_number,
            "low_confidence": False,
            "processing_status": ProcessingStatus.PENDING.value,
            "created_at": model.created_at,
        }

    def create_pending(
        self,
        shipment_id: str | None,
        tracking_number: str,
        carrier: str,
        carrier_url: str,
        sync_run_id: str | None = None,
        attempt_number: int = 1,
    ) -> TrackingEvidenceRecord:
        """
        Insert a new record in pending state.

        Returns:
            Created record with its assigned id
        """
        record = TrackingEvidenceRecord(
            id=0,
            shipment_id=shipment_id,
            tracking_number=tracking_number,
            carrier=carrier,
            carrier_url=carrier_url,
            sync_run_id=sync_run_id,
            attempt_number=attempt_number,
        )
        return self.create(record)

    def _transition(
        self,
        record_id: int,
        allowed_from: tuple[ProcessingStatus, ...],
        attempted: str,
        extra_where: list | None = None,
        **values,
    ) -> None:
        """
        Apply an update only if the record is in one of allowed_from.

        Raises:
            RecordNotFoundError: If the record does not exist
            InvalidTransitionError: If the record is in another state
        """
        stmt = (
            update(self.table)
            .where(self.table.c.id == record_id)
            .where(self.table.c.processing_status.in_([s.value for s in allowed_from]))
        )
        for clause in extra_where or []:
            stmt = stmt.where(clause)

        result = self.session.execute(stmt.values(**values))
        if result.rowcount > 0:
            return

        current = self.session.execute(
            select(self.table.c.processing_status).where(self.table.c.id == record_id)
        ).scalar_one_or_none()
        if current is None:
            raise RecordNotFoundError(record_id)
        raise InvalidTransitionError(record_id, current, attempted)

    def mark_processing(self, record_id: int) -> None:
        """Move a pending record to processing."""
        self._transition(
            record_id,
            (ProcessingStatus.PENDING,),
            "processing",
            processing_status=ProcessingStatus.PROCESSING.value,
        )

    def attach_screenshot(
        self,
        record_id: int,
        screenshot_ref: str,
        screenshot_sha256: str,
        captured_at: datetime,
    ) -> None:
        """Set the screenshot locator once, while the record is processing."""
        self._transition(
            record_id,
            (ProcessingStatus.PROCESSING,),
            "attach_screenshot",
            extra_where=[self.table.c.screenshot_ref.is_(None)],
            screenshot_ref=screenshot_ref,
            screenshot_sha256=screenshot_sha256,
            captured_at=captured_at,
        )

    def mark_completed(
        self,
        record_id: int,
        extraction: TrackingExtraction,
        low_confidence: bool = False,
    ) -> None:
        """
        Store extracted fields and move processing -> completed.

        The raw details carry the low_confidence flag so downstream
        reconciliation can discount the reading.
        """
        details = extraction.model_dump(mode="json")
        details["low_confidence"] = low_confidence

        self._transition(
            record_id,
            (ProcessingStatus.PROCESSING,),
            "completed",
            # A completed record always points at its screenshot
            extra_where=[self.table.c.screenshot_ref.is_not(None)],
            processing_status=ProcessingStatus.COMPLETED.value,
            extracted_status=extraction.status,
            extracted_location=extraction.location,
            extracted_eta=extraction.eta,
            extracted_details_raw=details,
            low_confidence=low_confidence,
            finished_at=datetime.now(timezone.utc),
        )

    def mark_failed(self, record_id: int, error_kind: str, error_message: str) -> None:
        """Move a pending or processing record to failed."""
        self._transition(
            record_id,
            UNFINISHED_STATUSES,
            "failed",
            processing_status=ProcessingStatus.FAILED.value,
            error_kind=error_kind,
            error_message=error_message,
            finished_at=datetime.now(timezone.utc),
        )

    def fail_if_unfinished(
        self, record_id: int, error_kind: str, error_message: str
    ) -> int:
        """
        Fail a record only if it is still pending or processing.

        Unlike mark_failed this does not raise when the record has already
        finished; it is used by the stale sweep, which races live workers.

        Returns:
            Number of rows updated (0 or 1)
        """
        stmt = (
            update(self.table)
            .where(self.table.c.id == record_id)
            .where(
                self.table.c.processing_status.in_(
                    [s.value for s in UNFINISHED_STATUSES]
                )
            )
            .values(
                processing_status=ProcessingStatus.FAILED.value,
                error_kind=error_kind,
                error_message=error_message,
                finished_at=datetime.now(timezone.utc),
            )
        )
        return self.session.execute(stmt).rowcount

    def get_latest_by_shipment(self, shipment_id: str) -> TrackingEvidenceRecord | None:
        """
        Get the current record for a shipment (most recent by created_at).

        Args:
            shipment_id: External shipment reference

        Returns:
            Most recent record or None
        """
        records = self.get_history(shipment_id=shipment_id, limit=1)
        return records[0] if records else None

    def get_latest_by_tracking_number(
        self, tracking_number: str
    ) -> TrackingEvidenceRecord | None:
        """Get the most recent record for a tracking number."""
        records = self.get_history(tracking_number=tracking_number, limit=1)
        return records[0] if records else None

    def get_history(
        self,
        shipment_id: str | None = None,
        tracking_number: str | None = None,
        limit: int = 10,
    ) -> list[TrackingEvidenceRecord]:
        """
        Get records, newest first, filtered by shipment or tracking number.

        Args:
            shipment_id: Optional shipment filter (takes priority)
            tracking_number: Optional tracking number filter
            limit: Maximum number of records

        Returns:
            List of records ordered by created_at desc, id desc
        """
        stmt = select(self.table)

        if shipment_id:
            stmt = stmt.where(self.table.c.shipment_id == shipment_id)
        elif tracking_number:
            stmt = stmt.where(self.table.c.tracking_number == tracking_number)

        stmt = stmt.order_by(
            self.table.c.created_at.desc(), self.table.c.id.desc()
        ).limit(limit)

        result = self.session.execute(stmt)
        return [self._row_to_model(row) for row in result.fetchall()]

    def list_by_status(
        self, status: ProcessingStatus | None = None, limit: int = 50
    ) -> list[TrackingEvidenceRecord]:
        """List records, newest first, optionally filtered by status."""
        stmt = select(self.table)

        if status is not None:
            stmt = stmt.where(self.table.c.processing_status == status.value)

        stmt = stmt.order_by(
            self.table.c.created_at.desc(), self.table.c.id.desc()
        ).limit(limit)

        result = self.session.execute(stmt)
        return [self._row_to_model(row) for row in result.fetchall()]

    def get_latest_per_tracking(
        self,
        carrier: str | None = None,
        exclude_statuses: Iterable[str] = (),
        limit: int = 100,
    ) -> list[TrackingEvidenceRecord]:
        """
        Latest record for each (tracking_number, carrier), stalest first.

        Ids are monotonic, so the highest id per key is the latest attempt.
        Keys whose latest extracted status is in exclude_statuses
        (case-insensitive) are skipped before the limit applies, so
        repeated calls with a small limit rotate through every key.
        """
        latest_ids = select(func.max(self.table.c.id)).group_by(
            self.table.c.tracking_number, self.table.c.carrier
        )
        if carrier:
            latest_ids = latest_ids.where(self.table.c.carrier == carrier)

        stmt = select(self.table).where(self.table.c.id.in_(latest_ids))
        excluded = [s.lower() for s in exclude_statuses]
        if excluded:
            stmt = stmt.where(
                func.lower(func.coalesce(self.table.c.extracted_status, "")).not_in(
                    excluded
                )
            )

        stmt = stmt.order_by(self.table.c.id.asc()).limit(limit)
        result = self.session.execute(stmt)
        return [self._row_to_model(row) for row in result.fetchall()]

    def get_unfinished_before(self, cutoff: datetime) -> list[int]:
        """Get ids of pending/processing records created before cutoff."""
        stmt = (
            select(self.table.c.id)
            .where(
                self.table.c.processing_status.in_(
                    [s.value for s in UNFINISHED_STATUSES]
                )
            )
            .where(self.table.c.created_at < cutoff)
            .order_by(self.table.c.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())
