"""
Sync orchestrator.

Runs the capture pipeline for a tracking number:

    resolve URL -> acquire lease -> [pending -> processing -> capture ->
    attach screenshot -> extract -> completed | failed] x attempts ->
    reconciliation event -> release lease

Each attempt writes its own evidence record. Transient failures (timeout,
navigation_failed, model_error) are retried with backoff while the lease is
held; every other failure ends the run. Storage and database errors are not
attempt failures: the open record is failed with kind "internal", the lease
is released and the error propagates.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable
from uuid import uuid4

from trackproof.agents.tracking_extractor import VisionExtractor
from trackproof.capture.screenshot import CaptureResult, ScreenshotCapture
from trackproof.carriers.adapters import CaptureHints
from trackproof.carriers.registry import CarrierRegistry
from trackproof.config import MIN_TRACKING_CONFIDENCE, SyncSettings
from trackproof.errors import (
    AttemptCancelled,
    AttemptError,
    AttemptErrorKind,
    CaptureError,
    ExtractionError,
    LeaseConflictError,
    LowConfidenceError,
    UnsupportedCarrierError,
)
from trackproof.models.evidence import ReconciliationEvent, TrackingExtraction
from trackproof.models.sync import (
    BatchItemResult,
    BatchSelector,
    BatchSyncResult,
    SyncOutcome,
    SyncResult,
    SyncTarget,
)
from trackproof.sync.evidence_store import EvidenceStore
from trackproof.sync.leases import LeaseHandle, LeaseKey, LeaseManager
from trackproof.sync.reconciliation import (
    LoggingReconciliationPublisher,
    ReconciliationPublisher,
    ShipmentSelector,
)
from trackproof.sync.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class _SyncRun:
    """State of one sync_one call, shared with the task that runs it."""

    run_id: str
    shipment_id: str | None
    tracking_number: str
    carrier: str
    url: str
    hints: CaptureHints
    attempts: int = 0
    record_ids: list[int] = field(default_factory=list)
    # Record currently pending/processing, None between attempts
    open_record: int | None = None

    @property
    def last_record(self) -> int | None:
        return self.record_ids[-1] if self.record_ids else None

    def log_fields(self, **extra) -> dict:
        fields = {
            "sync_run_id": self.run_id,
            "shipment_id": self.shipment_id,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "attempt": self.attempts,
        }
        fields.update(extra)
        return {"json_fields": fields}


class SyncOrchestrator:
    """Coordinates capture, extraction, evidence and reconciliation."""

    def __init__(
        self,
        registry: CarrierRegistry,
        capture: ScreenshotCapture,
        extractor: VisionExtractor,
        store: EvidenceStore,
        leases: LeaseManager,
        publisher: ReconciliationPublisher | None = None,
        settings: SyncSettings | None = None,
        shipment_selector: ShipmentSelector | None = None,
        retry_policy: RetryPolicy | None = None,
        min_confidence: float = MIN_TRACKING_CONFIDENCE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.capture = capture
        self.extractor = extractor
        self.store = store
        self.leases = leases
        self.publisher = publisher or LoggingReconciliationPublisher()
        self.settings = settings or SyncSettings()
        self.shipment_selector = shipment_selector
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.min_confidence = min_confidence
        self._sleep = sleep
        self._inflight: dict[LeaseKey, asyncio.Task] = {}
        self._publishing: set[asyncio.Future] = set()

    # =========================================================================
    # Single sync
    # =========================================================================

    async def sync_one(
        self, shipment_id: str | None, tracking_number: str, carrier: str
    ) -> SyncResult:
        """
        Capture fresh tracking evidence for one tracking number.

        Args:
            shipment_id: External shipment reference (optional)
            tracking_number: Carrier tracking number
            carrier: Carrier name or alias

        Returns:
            SyncResult. Unsupported carriers and lease conflicts are result
            values, not exceptions, and write no record.

        Raises:
            ValueError: If the tracking number is blank
            asyncio.CancelledError: If the calling task is cancelled
            Exception: Storage/database errors, after the lease is released
        """
        tracking_number = tracking_number.strip()

        try:
            adapter = self.registry.get(carrier)
            url = adapter.resolve_url(tracking_number)
        except UnsupportedCarrierError as e:
            logger.warning("Sync skipped: %s", e)
            return SyncResult(
                success=False,
                outcome=SyncOutcome.UNSUPPORTED_CARRIER,
                shipment_id=shipment_id,
                tracking_number=tracking_number,
                carrier=carrier,
                error=str(e),
            )

        key = LeaseKey(tracking_number=tracking_number, carrier=adapter.code)
        try:
            handle = self.leases.acquire(key)
        except LeaseConflictError as e:
            logger.info("Sync skipped: %s", e)
            return SyncResult(
                success=False,
                outcome=SyncOutcome.ALREADY_IN_PROGRESS,
                shipment_id=shipment_id,
                tracking_number=tracking_number,
                carrier=adapter.code,
                error=str(e),
            )

        run = _SyncRun(
            run_id=uuid4().hex,
            shipment_id=shipment_id,
            tracking_number=tracking_number,
            carrier=adapter.code,
            url=url,
            hints=adapter.hints,
        )
        logger.info(
            "Sync started for %s %s",
            run.carrier,
            tracking_number,
            extra=run.log_fields(url=url),
        )

        task = asyncio.create_task(self._run(run, handle))
        self._inflight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Only the inner task was cancelled, via cancel()
            error = AttemptCancelled()
            return self._result(
                run,
                SyncOutcome.CANCELLED,
                error=error.message,
                error_kind=error.kind,
            )
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]
            self.leases.release(handle)
            logger.info("Lease released for %s", key, extra=run.log_fields())

    async def _run(self, run: _SyncRun, handle: LeaseHandle) -> SyncResult:
        """Attempt loop; runs as its own task so cancel() can reach it."""
        policy = self.retry_policy
        attempt = 0

        try:
            while True:
                attempt += 1
                if attempt > 1:
                    delay = policy.delay_for(attempt - 1)
                    logger.info(
                        "Retrying in %.1fs", delay, extra=run.log_fields(delay=delay)
                    )
                    await self._sleep(delay)
                    if not self.leases.renew(handle):
                        logger.warning(
                            "Lease lost before retry, stopping",
                            extra=run.log_fields(),
                        )
                        return self._result(
                            run,
                            SyncOutcome.FAILED,
                            error=f"Lease for {handle.key} expired during backoff",
                            error_kind=AttemptErrorKind.LEASE_LOST,
                        )

                run.attempts = attempt
                record_id = self.store.create_pending(
                    shipment_id=run.shipment_id,
                    tracking_number=run.tracking_number,
                    carrier=run.carrier,
                    carrier_url=run.url,
                    sync_run_id=run.run_id,
                    attempt_number=attempt,
                )
                run.record_ids.append(record_id)
                run.open_record = record_id

                try:
                    extraction, low_confidence = await self._attempt(run, record_id)
                except AttemptError as e:
                    self.store.mark_failed(record_id, e.message, e.kind)
                    run.open_record = None
                    logger.warning(
                        "Attempt %d failed: %s",
                        attempt,
                        e,
                        extra=run.log_fields(record_id=record_id, kind=e.kind),
                    )
                    if e.retryable and policy.should_retry(attempt):
                        continue
                    return self._result(
                        run, SyncOutcome.FAILED, error=e.message, error_kind=e.kind
                    )

                self.store.mark_completed(record_id, extraction, low_confidence)
                run.open_record = None
                logger.info(
                    "Attempt %d completed: %s @ %s",
                    attempt,
                    extraction.status,
                    extraction.location,
                    extra=run.log_fields(
                        record_id=record_id, low_confidence=low_confidence
                    ),
                )

                # Completed evidence always gets its event: cancel() can no
                # longer reach this run and the publish outlives the caller
                self._detach(handle.key)
                publish = asyncio.ensure_future(
                    self._publish(run, record_id, extraction, low_confidence)
                )
                self._publishing.add(publish)
                publish.add_done_callback(self._publishing.discard)
                delivered = await asyncio.shield(publish)
                return self._result(
                    run,
                    SyncOutcome.COMPLETED,
                    extraction=extraction,
                    low_confidence=low_confidence,
                    reconciliation_delivered=delivered,
                )

        except asyncio.CancelledError:
            if run.open_record is not None:
                error = AttemptCancelled()
                self.store.mark_failed(run.open_record, error.message, error.kind)
                run.open_record = None
                logger.info("Sync cancelled", extra=run.log_fields())
            raise
        except Exception as e:
            logger.exception("Sync failed unexpectedly", extra=run.log_fields())
            if run.open_record is not None:
                self._record_internal_failure(run.open_record, e)
                run.open_record = None
            raise

    async def _attempt(
        self, run: _SyncRun, record_id: int
    ) -> tuple[TrackingExtraction, bool]:
        """
        One capture + extraction attempt against an existing pending record.

        Returns:
            (extraction, low_confidence)

        Raises:
            AttemptError: Capture or extraction failure, or overall deadline
        """
        self.store.mark_processing(record_id)

        try:
            async with asyncio.timeout(self.settings.attempt_deadline_seconds):
                capture = await self._capture(run)
                await self.store.attach_blob_async(
                    record_id,
                    capture.image_bytes,
                    capture.captured_at,
                    capture.content_type,
                )
                return await self._extract(run, capture)
        except TimeoutError as e:
            raise AttemptError(
                AttemptErrorKind.TIMEOUT,
                f"Attempt exceeded {self.settings.attempt_deadline_seconds:.0f}s deadline",
            ) from e

    async def _capture(self, run: _SyncRun) -> CaptureResult:
        timeout = self.settings.capture_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.capture.capture(run.url, timeout, run.hints), timeout=timeout
            )
        except TimeoutError as e:
            raise CaptureError(
                AttemptErrorKind.TIMEOUT, f"Capture timed out after {timeout:.0f}s"
            ) from e

    async def _extract(
        self, run: _SyncRun, capture: CaptureResult
    ) -> tuple[TrackingExtraction, bool]:
        timeout = self.settings.extraction_timeout_seconds
        try:
            extraction = await asyncio.wait_for(
                self.extractor.extract(
                    capture.image_bytes, run.carrier, run.tracking_number
                ),
                timeout=timeout,
            )
        except LowConfidenceError as e:
            return e.extraction, True
        except TimeoutError as e:
            raise ExtractionError(
                AttemptErrorKind.MODEL_ERROR,
                f"Extraction timed out after {timeout:.0f}s",
            ) from e

        return extraction, extraction.confidence < self.min_confidence

    async def _publish(
        self,
        run: _SyncRun,
        record_id: int,
        extraction: TrackingExtraction,
        low_confidence: bool,
    ) -> bool:
        """
        Emit the reconciliation event for a completed record.

        Delivery failure does not undo the evidence; it is logged and
        reported on the result.
        """
        event = ReconciliationEvent(
            shipment_id=run.shipment_id,
            tracking_number=run.tracking_number,
            carrier=run.carrier,
            record_id=record_id,
            extracted_status=extraction.status,
            extracted_location=extraction.location,
            extracted_eta=extraction.eta,
            low_confidence=low_confidence,
        )
        try:
            await self.publisher.publish(event)
        except Exception:
            logger.exception(
                "Reconciliation event not delivered",
                extra=run.log_fields(record_id=record_id),
            )
            return False
        return True

    def _detach(self, key: LeaseKey) -> None:
        if self._inflight.get(key) is asyncio.current_task():
            del self._inflight[key]

    def _record_internal_failure(self, record_id: int, error: Exception) -> None:
        """Fail the open record before an unexpected error propagates."""
        try:
            self.store.mark_failed(
                record_id, f"{type(error).__name__}: {error}", AttemptErrorKind.INTERNAL
            )
        except Exception:
            # Database is likely down too; the stale sweep fails the record later
            logger.exception("Could not mark record %s failed", record_id)

    def _result(self, run: _SyncRun, outcome: SyncOutcome, **fields) -> SyncResult:
        return SyncResult(
            success=outcome == SyncOutcome.COMPLETED,
            outcome=outcome,
            shipment_id=run.shipment_id,
            tracking_number=run.tracking_number,
            carrier=run.carrier,
            record_id=run.last_record,
            record_ids=list(run.record_ids),
            attempts=run.attempts,
            **fields,
        )

    # =========================================================================
    # Batch sync
    # =========================================================================

    def _select_targets(self, selector: BatchSelector) -> list[SyncTarget]:
        targets = list(selector.shipments)
        if selector.filter is not None:
            if self.shipment_selector is None:
                raise ValueError("Filtered batch sync needs a shipment selector")
            targets.extend(self.shipment_selector.select(selector.filter))
        return targets

    async def sync_batch(self, selector: BatchSelector) -> BatchSyncResult:
        """
        Sync many shipments through a bounded pool.

        A failure in one item, including an unexpected exception, never
        affects the others; it is reported on that item's result.

        Raises:
            ValueError: If the selector has a filter but no shipment
                selector is configured
        """
        started_at = datetime.now(timezone.utc)
        targets = self._select_targets(selector)
        semaphore = asyncio.Semaphore(self.settings.concurrency)

        logger.info(
            "Batch sync started: %d targets, concurrency %d",
            len(targets),
            self.settings.concurrency,
        )

        async def run_item(target: SyncTarget) -> SyncResult:
            async with semaphore:
                return await self.sync_one(
                    target.shipment_id, target.tracking_number, target.carrier
                )

        outcomes = await asyncio.gather(
            *(run_item(target) for target in targets), return_exceptions=True
        )

        results = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, SyncResult):
                results.append(
                    BatchItemResult(
                        shipment_id=outcome.shipment_id,
                        tracking_number=outcome.tracking_number,
                        carrier=outcome.carrier,
                        success=outcome.success,
                        outcome=outcome.outcome,
                        record_id=outcome.record_id,
                        error=outcome.error,
                    )
                )
                continue

            if isinstance(outcome, asyncio.CancelledError):
                item_outcome = SyncOutcome.CANCELLED
            elif isinstance(outcome, Exception):
                item_outcome = SyncOutcome.ERROR
                logger.error(
                    "Batch item %s %s raised",
                    target.carrier,
                    target.tracking_number,
                    exc_info=outcome,
                )
            else:
                raise outcome

            results.append(
                BatchItemResult(
                    shipment_id=target.shipment_id,
                    tracking_number=target.tracking_number,
                    carrier=target.carrier,
                    success=False,
                    outcome=item_outcome,
                    error=f"{type(outcome).__name__}: {outcome}",
                )
            )

        succeeded = sum(1 for r in results if r.success)
        batch = BatchSyncResult(
            results=results,
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Batch sync finished: %d/%d succeeded", batch.succeeded, batch.total
        )
        return batch

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, tracking_number: str, carrier: str) -> bool:
        """
        Cancel an in-flight sync running in this process.

        Returns:
            True if a running sync was found and cancelled
        """
        try:
            code = self.registry.get(carrier).code
        except UnsupportedCarrierError:
            return False

        key = LeaseKey(tracking_number=tracking_number.strip(), carrier=code)
        task = self._inflight.get(key)
        if task is None or task.done():
            return False

        logger.info("Cancelling sync for %s", key)
        task.cancel()
        return True

    def in_flight(self) -> list[LeaseKey]:
        """Keys with a sync currently running in this process."""
        return [key for key, task in self._inflight.items() if not task.done()]
