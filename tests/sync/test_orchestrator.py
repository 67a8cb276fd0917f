"""
Tests for SyncOrchestrator.

Uses the real EvidenceStore (in-memory SQLite, local blob storage) and
in-memory leases, with fake capture, extraction and publishing.
"""

import asyncio
import threading
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from trackproof.capture.screenshot import CaptureResult, ScreenshotCapture
from trackproof.carriers import build_default_registry
from trackproof.config import SyncSettings
from trackproof.errors import (
    AttemptErrorKind,
    CaptureError,
    ExtractionError,
    LowConfidenceError,
)
from trackproof.agents.tracking_extractor import VisionExtractor
from trackproof.models.evidence import (
    ProcessingStatus,
    ReconciliationEvent,
    TrackingExtraction,
)
from trackproof.models.sync import BatchSelector, SyncOutcome, SyncTarget
from trackproof.sync.evidence_store import EvidenceStore
from trackproof.sync.leases import DatabaseLeaseManager, InMemoryLeaseManager, LeaseKey
from trackproof.sync.orchestrator import SyncOrchestrator
from trackproof.sync.reconciliation import (
    ReconciliationPublisher,
    ShipmentSelector,
    TrackedShipmentSelector,
)
from trackproof.sync.retry import RetryPolicy
from trackproof.utils.blob_storage import LocalBlobStorage

TRACKING = "1Z999AA10123456784"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

UPS_READING = TrackingExtraction(
    status="In Transit",
    location="Louisville, KY",
    eta="2026-01-14",
    confidence=0.95,
)


# =============================================================================
# Fakes
# =============================================================================


class FakeCapture(ScreenshotCapture):
    """Capture driven by an async handler; records every URL."""

    def __init__(self, handler: Callable[[str], Awaitable[CaptureResult]] | None = None):
        self.handler = handler
        self.urls: list[str] = []
        self.entered = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def capture(self, url, timeout, hints=None) -> CaptureResult:
        self.urls.append(url)
        self.entered.set()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.handler is not None:
                return await self.handler(url)
            await asyncio.sleep(0)
            return CaptureResult(image_bytes=PNG)
        finally:
            self.active -= 1


class FakeExtractor(VisionExtractor):
    def __init__(self, handler=None):
        self.handler = handler
        self.calls = 0

    async def extract(self, image_bytes, carrier, tracking_number) -> TrackingExtraction:
        self.calls += 1
        if self.handler is not None:
            return await self.handler(tracking_number)
        return UPS_READING


class RecordingPublisher(ReconciliationPublisher):
    def __init__(self, fail: bool = False):
        self.events: list[ReconciliationEvent] = []
        self.fail = fail

    async def publish(self, event: ReconciliationEvent) -> None:
        if self.fail:
            raise ConnectionError("case management unreachable")
        self.events.append(event)


class SlowPublisher(RecordingPublisher):
    """Holds each event until release is set."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.delivered = asyncio.Event()

    async def publish(self, event: ReconciliationEvent) -> None:
        self.entered.set()
        await self.release.wait()
        await super().publish(event)
        self.delivered.set()


class ExplodingBlobStorage(LocalBlobStorage):
    def put(self, key, data, content_type):
        raise OSError("disk full")


def failing_capture(*kinds: AttemptErrorKind):
    """Handler that fails with the given kinds in order, then succeeds."""
    remaining = list(kinds)

    async def handler(url: str) -> CaptureResult:
        if remaining:
            raise CaptureError(remaining.pop(0), "scripted failure")
        return CaptureResult(image_bytes=PNG)

    return handler


class Harness:
    """Orchestrator plus its collaborators."""

    def __init__(self, tmp_path: Path, **overrides):
        self.capture = overrides.pop("capture", FakeCapture())
        self.extractor = overrides.pop("extractor", FakeExtractor())
        self.publisher = overrides.pop("publisher", RecordingPublisher())
        self.store = overrides.pop(
            "store", EvidenceStore(LocalBlobStorage(tmp_path / "blobs"))
        )
        self.settings = overrides.pop(
            "settings", SyncSettings(max_attempts=3, concurrency=3)
        )
        self.leases = overrides.pop("leases", InMemoryLeaseManager(ttl_seconds=360))
        self.delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            self.delays.append(delay)

        self.orchestrator = SyncOrchestrator(
            registry=build_default_registry(extra_templates={}),
            capture=self.capture,
            extractor=self.extractor,
            store=self.store,
            leases=self.leases,
            publisher=self.publisher,
            settings=self.settings,
            retry_policy=RetryPolicy.from_settings(self.settings),
            sleep=fake_sleep,
            **overrides,
        )
        # Deterministic backoff
        self.orchestrator.retry_policy.rng = lambda: 0.0

    def records(self):
        return self.store.list_records(limit=500)


@pytest.fixture
def harness(sqlite_db, tmp_path: Path) -> Harness:
    return Harness(tmp_path)


# =============================================================================
# sync_one
# =============================================================================


class TestSyncOneSuccess:
    @pytest.mark.asyncio
    async def test_ups_in_transit(self, harness: Harness):
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.success
        assert result.outcome == SyncOutcome.COMPLETED
        assert result.attempts == 1
        assert result.reconciliation_delivered is True
        assert harness.capture.urls == [
            f"https://www.ups.com/track?track=yes&trackNums={TRACKING}"
        ]

        record = harness.store.get(result.record_id)
        assert record.processing_status == ProcessingStatus.COMPLETED
        assert record.carrier == "UPS"
        assert record.shipment_id == "42"
        assert record.extracted_status == "In Transit"
        assert record.extracted_location == "Louisville, KY"
        assert record.extracted_eta == "2026-01-14"
        assert record.screenshot_ref is not None
        assert record.screenshot_sha256 is not None
        assert record.captured_at is not None
        assert harness.store.blob_storage.get(record.screenshot_ref) == PNG

        assert len(harness.publisher.events) == 1
        event = harness.publisher.events[0]
        assert event.shipment_id == "42"
        assert event.record_id == record.id
        assert event.extracted_status == "In Transit"
        assert event.extracted_location == "Louisville, KY"
        assert event.extracted_eta == "2026-01-14"

        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))

    @pytest.mark.asyncio
    async def test_carrier_alias_and_whitespace(self, harness: Harness):
        result = await harness.orchestrator.sync_one(None, f"  {TRACKING} ", "ups")

        assert result.success
        assert result.tracking_number == TRACKING
        assert result.carrier == "UPS"

    @pytest.mark.asyncio
    async def test_blank_tracking_number(self, harness: Harness):
        with pytest.raises(ValueError):
            await harness.orchestrator.sync_one("42", "   ", "UPS")
        assert harness.records() == []


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_unsupported_carrier(self, harness: Harness):
        result = await harness.orchestrator.sync_one("42", TRACKING, "Pony Express")

        assert not result.success
        assert result.outcome == SyncOutcome.UNSUPPORTED_CARRIER
        assert result.record_id is None
        assert harness.records() == []
        assert harness.capture.urls == []

    @pytest.mark.asyncio
    async def test_lease_held(self, harness: Harness):
        harness.leases.acquire(LeaseKey(TRACKING, "UPS"))

        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.outcome == SyncOutcome.ALREADY_IN_PROGRESS
        assert harness.records() == []
        assert harness.capture.urls == []

    @pytest.mark.asyncio
    async def test_already_in_progress_while_processing(self, sqlite_db, tmp_path: Path):
        release = asyncio.Event()

        async def slow(url: str) -> CaptureResult:
            await release.wait()
            return CaptureResult(image_bytes=PNG)

        harness = Harness(tmp_path, capture=FakeCapture(slow))
        first = asyncio.create_task(harness.orchestrator.sync_one("42", TRACKING, "UPS"))
        await harness.capture.entered.wait()

        second = await harness.orchestrator.sync_one("42", TRACKING, "UPS")
        assert second.outcome == SyncOutcome.ALREADY_IN_PROGRESS

        [in_flight] = harness.records()
        assert in_flight.processing_status == ProcessingStatus.PROCESSING

        release.set()
        assert (await first).success
        assert len(harness.records()) == 1

    @pytest.mark.asyncio
    async def test_concurrent_syncs_same_key(self, harness: Harness):
        results = await asyncio.gather(
            harness.orchestrator.sync_one("42", TRACKING, "UPS"),
            harness.orchestrator.sync_one("42", TRACKING, "UPS"),
        )

        outcomes = sorted(r.outcome for r in results)
        assert outcomes == sorted(
            [SyncOutcome.COMPLETED, SyncOutcome.ALREADY_IN_PROGRESS]
        )
        assert len(harness.records()) == 1
        assert len(harness.publisher.events) == 1

    @pytest.mark.asyncio
    async def test_concurrent_syncs_same_key_database_leases(
        self, sqlite_db, tmp_path: Path
    ):
        harness = Harness(tmp_path, leases=DatabaseLeaseManager(ttl_seconds=360))

        results = await asyncio.gather(
            harness.orchestrator.sync_one("42", TRACKING, "UPS"),
            harness.orchestrator.sync_one("42", TRACKING, "UPS"),
        )

        outcomes = sorted(r.outcome for r in results)
        assert outcomes == sorted(
            [SyncOutcome.COMPLETED, SyncOutcome.ALREADY_IN_PROGRESS]
        )
        assert len(harness.records()) == 1
        assert len(harness.publisher.events) == 1
        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failures_then_success(self, sqlite_db, tmp_path: Path):
        harness = Harness(
            tmp_path,
            capture=FakeCapture(
                failing_capture(
                    AttemptErrorKind.TIMEOUT, AttemptErrorKind.NAVIGATION_FAILED
                )
            ),
        )

        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.success
        assert result.attempts == 3
        assert len(result.record_ids) == 3
        assert harness.delays == [2.0, 4.0]

        first, second, third = (harness.store.get(i) for i in result.record_ids)
        assert (first.processing_status, first.error_kind) == ("failed", "timeout")
        assert (second.processing_status, second.error_kind) == (
            "failed",
            "navigation_failed",
        )
        assert third.processing_status == ProcessingStatus.COMPLETED
        assert [r.attempt_number for r in (first, second, third)] == [1, 2, 3]
        assert len({r.sync_run_id for r in (first, second, third)}) == 1
        assert len(harness.publisher.events) == 1

    @pytest.mark.asyncio
    async def test_retry_bound(self, sqlite_db, tmp_path: Path):
        harness = Harness(
            tmp_path,
            capture=FakeCapture(failing_capture(*[AttemptErrorKind.TIMEOUT] * 10)),
            settings=SyncSettings(max_attempts=3),
        )

        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert not result.success
        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == "timeout"
        assert result.attempts == 3
        assert len(harness.capture.urls) == 3
        assert len(harness.delays) == 2
        assert all(
            r.processing_status == ProcessingStatus.FAILED for r in harness.records()
        )
        assert harness.publisher.events == []
        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))

    @pytest.mark.asyncio
    async def test_blocked_is_not_retried(self, sqlite_db, tmp_path: Path):
        harness = Harness(
            tmp_path, capture=FakeCapture(failing_capture(AttemptErrorKind.BLOCKED))
        )

        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.error_kind == "blocked"
        assert result.attempts == 1
        assert harness.delays == []

    @pytest.mark.asyncio
    async def test_model_error_is_retried(self, sqlite_db, tmp_path: Path):
        calls = {"n": 0}

        async def flaky(tracking_number: str) -> TrackingExtraction:
            calls["n"] += 1
            if calls["n"] == 1:
                raise ExtractionError(AttemptErrorKind.MODEL_ERROR, "503 from model")
            return UPS_READING

        harness = Harness(tmp_path, extractor=FakeExtractor(flaky))
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.success
        assert result.attempts == 2
        failed = harness.store.get(result.record_ids[0])
        # The failed attempt still keeps its screenshot as evidence
        assert failed.screenshot_ref is not None
        assert failed.error_kind == "model_error"

    @pytest.mark.asyncio
    async def test_malformed_response_is_terminal(self, sqlite_db, tmp_path: Path):
        async def garbage(tracking_number: str) -> TrackingExtraction:
            raise ExtractionError(AttemptErrorKind.MALFORMED_RESPONSE, "not JSON")

        harness = Harness(tmp_path, extractor=FakeExtractor(garbage))
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == "malformed_response"
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_capture_timeout(self, sqlite_db, tmp_path: Path):
        async def hang(url: str) -> CaptureResult:
            await asyncio.sleep(5)
            return CaptureResult(image_bytes=PNG)

        harness = Harness(
            tmp_path,
            capture=FakeCapture(hang),
            settings=SyncSettings(max_attempts=1, capture_timeout_seconds=0.05),
        )
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.error_kind == "timeout"
        [record] = harness.records()
        assert record.processing_status == ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_lease_lost_during_backoff(self, sqlite_db, tmp_path: Path):
        class ExpiringLeases(InMemoryLeaseManager):
            def renew(self, handle):
                return False

        harness = Harness(
            tmp_path,
            capture=FakeCapture(failing_capture(AttemptErrorKind.TIMEOUT)),
            leases=ExpiringLeases(ttl_seconds=360),
        )
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == "lease_lost"
        assert result.attempts == 1
        assert len(harness.records()) == 1


class TestLowConfidence:
    @pytest.mark.asyncio
    async def test_low_confidence_is_completed_and_flagged(
        self, sqlite_db, tmp_path: Path
    ):
        reading = UPS_READING.model_copy(update={"confidence": 0.4})

        async def unsure(tracking_number: str) -> TrackingExtraction:
            raise LowConfidenceError(reading, 0.7)

        harness = Harness(tmp_path, extractor=FakeExtractor(unsure))
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.success
        assert result.low_confidence
        record = harness.store.get(result.record_id)
        assert record.processing_status == ProcessingStatus.COMPLETED
        assert record.low_confidence
        assert record.extracted_details_raw["low_confidence"] is True
        assert harness.publisher.events[0].low_confidence

    @pytest.mark.asyncio
    async def test_confidence_below_threshold_is_flagged(
        self, sqlite_db, tmp_path: Path
    ):
        async def quiet(tracking_number: str) -> TrackingExtraction:
            return UPS_READING.model_copy(update={"confidence": 0.5})

        harness = Harness(tmp_path, extractor=FakeExtractor(quiet), min_confidence=0.7)
        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.low_confidence


class TestFailurePropagation:
    @pytest.mark.asyncio
    async def test_publish_failure_keeps_evidence(self, sqlite_db, tmp_path: Path):
        harness = Harness(tmp_path, publisher=RecordingPublisher(fail=True))

        result = await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        assert result.success
        assert result.reconciliation_delivered is False
        assert harness.store.get(result.record_id).processing_status == "completed"

    @pytest.mark.asyncio
    async def test_upload_does_not_block_other_syncs(self, sqlite_db, tmp_path: Path):
        started = threading.Event()
        finish = threading.Event()

        class SlowBlobStorage(LocalBlobStorage):
            def put(self, key, data, content_type):
                started.set()
                finish.wait(timeout=5)
                return super().put(key, data, content_type)

        harness = Harness(
            tmp_path, store=EvidenceStore(SlowBlobStorage(tmp_path / "blobs"))
        )
        task = asyncio.create_task(harness.orchestrator.sync_one("42", TRACKING, "UPS"))
        await asyncio.to_thread(started.wait, 5)

        # The loop keeps serving while the upload is stuck
        other = await harness.orchestrator.sync_one("43", TRACKING, "UPS")
        assert other.outcome == SyncOutcome.ALREADY_IN_PROGRESS

        finish.set()
        assert (await task).success

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, sqlite_db, tmp_path: Path):
        harness = Harness(
            tmp_path, store=EvidenceStore(ExplodingBlobStorage(tmp_path / "blobs"))
        )

        with pytest.raises(OSError):
            await harness.orchestrator.sync_one("42", TRACKING, "UPS")

        [record] = harness.records()
        assert record.processing_status == ProcessingStatus.FAILED
        assert record.error_kind == "internal"
        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, sqlite_db, tmp_path: Path):
        async def hang(url: str) -> CaptureResult:
            await asyncio.Event().wait()
            return CaptureResult(image_bytes=PNG)

        harness = Harness(tmp_path, capture=FakeCapture(hang))
        task = asyncio.create_task(harness.orchestrator.sync_one("42", TRACKING, "UPS"))
        await harness.capture.entered.wait()

        assert harness.orchestrator.in_flight() == [LeaseKey(TRACKING, "UPS")]
        assert harness.orchestrator.cancel(TRACKING, "ups")

        result = await task
        assert result.outcome == SyncOutcome.CANCELLED
        assert result.error_kind == "cancelled"

        [record] = harness.records()
        assert record.processing_status == ProcessingStatus.FAILED
        assert record.error_kind == "cancelled"
        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))
        assert harness.orchestrator.in_flight() == []

    @pytest.mark.asyncio
    async def test_cancel_after_completion_still_publishes(
        self, sqlite_db, tmp_path: Path
    ):
        harness = Harness(tmp_path, publisher=SlowPublisher())
        task = asyncio.create_task(harness.orchestrator.sync_one("42", TRACKING, "UPS"))
        await harness.publisher.entered.wait()

        assert not harness.orchestrator.cancel(TRACKING, "UPS")
        harness.publisher.release.set()

        result = await task
        assert result.success
        assert result.outcome == SyncOutcome.COMPLETED
        assert result.reconciliation_delivered is True
        [record] = harness.records()
        assert record.processing_status == ProcessingStatus.COMPLETED
        assert [e.record_id for e in harness.publisher.events] == [record.id]

    @pytest.mark.asyncio
    async def test_caller_cancelled_during_publish(self, sqlite_db, tmp_path: Path):
        harness = Harness(tmp_path, publisher=SlowPublisher())
        task = asyncio.create_task(harness.orchestrator.sync_one("42", TRACKING, "UPS"))
        await harness.publisher.entered.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        harness.publisher.release.set()
        await asyncio.wait_for(harness.publisher.delivered.wait(), timeout=5)

        [record] = harness.records()
        assert record.processing_status == ProcessingStatus.COMPLETED
        assert [e.record_id for e in harness.publisher.events] == [record.id]
        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, harness: Harness):
        assert not harness.orchestrator.cancel(TRACKING, "UPS")
        assert not harness.orchestrator.cancel(TRACKING, "Pony Express")

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, sqlite_db, tmp_path: Path):
        async def hang(url: str) -> CaptureResult:
            await asyncio.Event().wait()
            return CaptureResult(image_bytes=PNG)

        harness = Harness(tmp_path, capture=FakeCapture(hang))
        task = asyncio.create_task(harness.orchestrator.sync_one("42", TRACKING, "UPS"))
        await harness.capture.entered.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        [record] = harness.records()
        assert record.error_kind == "cancelled"
        assert not harness.leases.is_held(LeaseKey(TRACKING, "UPS"))


# =============================================================================
# sync_batch
# =============================================================================


def _targets(n: int) -> list[SyncTarget]:
    return [
        SyncTarget(shipment_id=str(i), tracking_number=f"1Z{i:016d}", carrier="UPS")
        for i in range(n)
    ]


class TestSyncBatch:
    @pytest.mark.asyncio
    async def test_k_failures_isolated(self, sqlite_db, tmp_path: Path):
        blocked = {"1Z0000000000000001", "1Z0000000000000004"}

        async def handler(url: str) -> CaptureResult:
            await asyncio.sleep(0.01)
            if any(url.endswith(tn) for tn in blocked):
                raise CaptureError(AttemptErrorKind.BLOCKED, "captcha")
            return CaptureResult(image_bytes=PNG)

        harness = Harness(
            tmp_path,
            capture=FakeCapture(handler),
            settings=SyncSettings(concurrency=2),
        )
        batch = await harness.orchestrator.sync_batch(BatchSelector(shipments=_targets(6)))

        assert batch.total == 6
        assert batch.succeeded == 4
        assert batch.failed == 2
        assert [r.tracking_number for r in batch.results] == [
            t.tracking_number for t in _targets(6)
        ]
        assert {r.tracking_number for r in batch.results if not r.success} == blocked
        assert batch.finished_at >= batch.started_at

        records = harness.records()
        assert len(records) == 6
        assert not any(
            r.processing_status in (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)
            for r in records
        )
        assert harness.capture.max_active <= 2
        assert len(harness.publisher.events) == 4

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_per_item(
        self, sqlite_db, tmp_path: Path
    ):
        async def handler(url: str) -> CaptureResult:
            if url.endswith("1Z0000000000000000"):
                raise RuntimeError("browser crashed")
            return CaptureResult(image_bytes=PNG)

        harness = Harness(tmp_path, capture=FakeCapture(handler))
        batch = await harness.orchestrator.sync_batch(BatchSelector(shipments=_targets(3)))

        errored = batch.results[0]
        assert errored.outcome == SyncOutcome.ERROR
        assert "browser crashed" in errored.error
        assert batch.succeeded == 2

        internal = [r for r in harness.records() if r.error_kind == "internal"]
        assert len(internal) == 1

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, harness: Harness):
        targets = [
            SyncTarget(shipment_id="1", tracking_number=TRACKING, carrier="UPS"),
            SyncTarget(shipment_id="2", tracking_number="X1", carrier="Pony Express"),
        ]
        batch = await harness.orchestrator.sync_batch(BatchSelector(shipments=targets))

        assert [r.outcome for r in batch.results] == [
            SyncOutcome.COMPLETED,
            SyncOutcome.UNSUPPORTED_CARRIER,
        ]

    @pytest.mark.asyncio
    async def test_empty_batch(self, harness: Harness):
        batch = await harness.orchestrator.sync_batch(BatchSelector())
        assert batch.total == 0
        assert batch.results == []

    @pytest.mark.asyncio
    async def test_filter_uses_shipment_selector(self, sqlite_db, tmp_path: Path):
        class StaticSelector(ShipmentSelector):
            def __init__(self):
                self.filters = []

            def select(self, filter):
                self.filters.append(filter)
                return _targets(2)

        selector = StaticSelector()
        harness = Harness(tmp_path, shipment_selector=selector)
        batch = await harness.orchestrator.sync_batch(
            BatchSelector(filter={"carrier": "UPS"})
        )

        assert selector.filters == [{"carrier": "UPS"}]
        assert batch.succeeded == 2

    @pytest.mark.asyncio
    async def test_filtered_rounds_reach_every_key(self, sqlite_db, tmp_path: Path):
        store = EvidenceStore(LocalBlobStorage(tmp_path / "blobs"))
        harness = Harness(
            tmp_path, store=store, shipment_selector=TrackedShipmentSelector(store)
        )
        seeded = _targets(3)
        await harness.orchestrator.sync_batch(BatchSelector(shipments=seeded))

        rounds = []
        for _ in range(3):
            batch = await harness.orchestrator.sync_batch(
                BatchSelector(filter={"limit": 2})
            )
            assert batch.succeeded == 2
            rounds.append([item.tracking_number for item in batch.results])

        assert rounds[0] != rounds[1]
        assert {n for r in rounds for n in r} == {t.tracking_number for t in seeded}

    @pytest.mark.asyncio
    async def test_filter_without_selector(self, harness: Harness):
        with pytest.raises(ValueError):
            await harness.orchestrator.sync_batch(BatchSelector(filter={}))
