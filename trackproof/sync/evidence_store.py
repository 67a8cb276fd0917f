"""
Evidence store: durable, append-only trail of capture attempts.

Every write runs in its own transaction so a crash between steps leaves the
record in the last committed state (the stale sweep fails it later). Status
guards live in EvidenceRepository; this layer adds blob handling and the
read API used by the routes.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable
from urllib.parse import quote

from trackproof.db.unit_of_work import UnitOfWork
from trackproof.errors import AttemptErrorKind, RecordNotFoundError
from trackproof.models.evidence import (
    ProcessingStatus,
    TrackingEvidenceRecord,
    TrackingExtraction,
)
from trackproof.utils.blob_storage import BlobStorage
from trackproof.utils.hash import compute_sha256
from trackproof.utils.image import extension_for

logger = logging.getLogger(__name__)

SCREENSHOT_PREFIX = "tracking-screenshots"


def build_screenshot_key(
    carrier: str,
    tracking_number: str,
    record_id: int,
    captured_at: datetime,
    content_type: str = "image/png",
) -> str:
    """
    Blob key for a screenshot.

    Record id plus capture time make every key unique, so write-once
    storage never sees the same key twice.
    """
    carrier_part = carrier.lower().replace(" ", "-")
    tracking_part = quote(tracking_number.strip(), safe="")
    epoch_ms = int(captured_at.timestamp() * 1000)
    return (
        f"{SCREENSHOT_PREFIX}/{carrier_part}/"
        f"{tracking_part}-{record_id}-{epoch_ms}.{extension_for(content_type)}"
    )


class EvidenceStore:
    """Evidence records plus their screenshot blobs."""

    def __init__(
        self,
        blob_storage: BlobStorage,
        uow_factory: Callable[[], UnitOfWork] = UnitOfWork,
    ):
        self.blob_storage = blob_storage
        self._uow_factory = uow_factory

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_pending(
        self,
        shipment_id: str | None,
        tracking_number: str,
        carrier: str,
        carrier_url: str,
        sync_run_id: str | None = None,
        attempt_number: int = 1,
    ) -> int:
        """
        Create a pending record for a new attempt.

        Returns:
            The new record id
        """
        with self._uow_factory() as uow:
            record = uow.evidence.create_pending(
                shipment_id=shipment_id,
                tracking_number=tracking_number,
                carrier=carrier,
                carrier_url=carrier_url,
                sync_run_id=sync_run_id,
                attempt_number=attempt_number,
            )
            uow.commit()
        return record.id

    def mark_processing(self, record_id: int) -> None:
        with self._uow_factory() as uow:
            uow.evidence.mark_processing(record_id)
            uow.commit()

    def attach_blob(
        self,
        record_id: int,
        image_bytes: bytes,
        captured_at: datetime,
        content_type: str = "image/png",
    ) -> str:
        """
        Upload a screenshot and point the record at it.

        The blob is written before the record so a record never references
        a missing object.

        Returns:
            Blob locator stored as screenshot_ref

        Raises:
            RecordNotFoundError: If the record does not exist
            InvalidTransitionError: If the record is not processing or
                already has a screenshot
        """
        key = self._screenshot_key(record_id, captured_at, content_type)
        ref = self.blob_storage.put(key, image_bytes, content_type)
        self._link_screenshot(record_id, ref, compute_sha256(image_bytes), captured_at)
        return ref

    async def attach_blob_async(
        self,
        record_id: int,
        image_bytes: bytes,
        captured_at: datetime,
        content_type: str = "image/png",
    ) -> str:
        """attach_blob with the upload running in a worker thread."""
        key = self._screenshot_key(record_id, captured_at, content_type)
        # Blob clients block; keep the upload off the event loop
        ref = await asyncio.to_thread(
            self.blob_storage.put, key, image_bytes, content_type
        )
        self._link_screenshot(record_id, ref, compute_sha256(image_bytes), captured_at)
        return ref

    def _screenshot_key(
        self, record_id: int, captured_at: datetime, content_type: str
    ) -> str:
        record = self.get(record_id)
        return build_screenshot_key(
            record.carrier, record.tracking_number, record_id, captured_at, content_type
        )

    def _link_screenshot(
        self, record_id: int, ref: str, sha256: str, captured_at: datetime
    ) -> None:
        with self._uow_factory() as uow:
            uow.evidence.attach_screenshot(record_id, ref, sha256, captured_at)
            uow.commit()

        logger.info("Stored screenshot for record %s at %s", record_id, ref)

    def mark_completed(
        self,
        record_id: int,
        extraction: TrackingExtraction,
        low_confidence: bool = False,
    ) -> None:
        with self._uow_factory() as uow:
            uow.evidence.mark_completed(record_id, extraction, low_confidence)
            uow.commit()

    def mark_failed(
        self, record_id: int, error_message: str, error_kind: AttemptErrorKind | str
    ) -> None:
        with self._uow_factory() as uow:
            uow.evidence.mark_failed(record_id, str(error_kind), error_message)
            uow.commit()

    def fail_stale(self, older_than: timedelta) -> list[int]:
        """
        Fail records left pending/processing longer than older_than.

        These are attempts a crashed worker never finished. Records finished
        concurrently by a live worker are skipped.

        Returns:
            Ids of the records that were failed
        """
        cutoff = datetime.now(timezone.utc) - older_than
        failed: list[int] = []

        with self._uow_factory() as uow:
            candidates = uow.evidence.get_unfinished_before(cutoff)

        for record_id in candidates:
            with self._uow_factory() as uow:
                # Only touch rows still unfinished; a live worker may finish first
                rowcount = uow.evidence.fail_if_unfinished(
                    record_id,
                    str(AttemptErrorKind.ABANDONED),
                    f"Left unfinished for more than {int(older_than.total_seconds())}s",
                )
                uow.commit()
            if rowcount:
                failed.append(record_id)

        if failed:
            logger.warning("Failed %d abandoned evidence records", len(failed))
        return failed

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, record_id: int) -> TrackingEvidenceRecord:
        """
        Raises:
            RecordNotFoundError: If the record does not exist
        """
        with self._uow_factory() as uow:
            record = uow.evidence.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def latest_for_shipment(self, shipment_id: str) -> TrackingEvidenceRecord | None:
        with self._uow_factory() as uow:
            return uow.evidence.get_latest_by_shipment(shipment_id)

    def latest_for_tracking(
        self, tracking_number: str
    ) -> TrackingEvidenceRecord | None:
        with self._uow_factory() as uow:
            return uow.evidence.get_latest_by_tracking_number(tracking_number)

    def history(
        self,
        shipment_id: str | None = None,
        tracking_number: str | None = None,
        limit: int = 10,
    ) -> list[TrackingEvidenceRecord]:
        """Records for a shipment or tracking number, newest first."""
        if not shipment_id and not tracking_number:
            raise ValueError("shipment_id or tracking_number is required")
        with self._uow_factory() as uow:
            return uow.evidence.get_history(
                shipment_id=shipment_id, tracking_number=tracking_number, limit=limit
            )

    def list_records(
        self, status: ProcessingStatus | None = None, limit: int = 50
    ) -> list[TrackingEvidenceRecord]:
        with self._uow_factory() as uow:
            return uow.evidence.list_by_status(status=status, limit=limit)

    def latest_per_tracking(
        self,
        carrier: str | None = None,
        exclude_statuses: Iterable[str] = (),
        limit: int = 100,
    ) -> list[TrackingEvidenceRecord]:
        """Latest attempt for every tracked (tracking_number, carrier), stalest first."""
        with self._uow_factory() as uow:
            return uow.evidence.get_latest_per_tracking(
                carrier=carrier, exclude_statuses=exclude_statuses, limit=limit
            )
