"""
Tests for tracking sync and evidence API endpoints.

The orchestrator is replaced with a mock through FastAPI dependency
overrides and the database availability check is patched.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from trackproof.api.main import app
from trackproof.api.routes.tracking import get_orchestrator
from trackproof.errors import RecordNotFoundError
from trackproof.models.evidence import ProcessingStatus, TrackingEvidenceRecord
from trackproof.models.sync import (
    BatchItemResult,
    BatchSyncResult,
    SyncOutcome,
    SyncResult,
)

TRACKING = "1Z999AA10123456784"


@pytest.fixture
def orchestrator() -> MagicMock:
    mock = MagicMock()
    mock.sync_one = AsyncMock()
    mock.sync_batch = AsyncMock()
    return mock


@pytest.fixture
def client(orchestrator: MagicMock):
    """Test client with the orchestrator dependency overridden."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_db_initialized():
    """Mock DatabaseConnection.is_initialized to return True."""
    with patch("trackproof.api.routes.tracking.DatabaseConnection") as mock_db:
        mock_db.is_initialized.return_value = True
        yield mock_db


@pytest.fixture
def sample_record() -> TrackingEvidenceRecord:
    return TrackingEvidenceRecord(
        id=17,
        shipment_id="42",
        tracking_number=TRACKING,
        carrier="UPS",
        carrier_url=f"https://www.ups.com/track?track=yes&trackNums={TRACKING}",
        screenshot_ref="gs://evidence/tracking-screenshots/ups/x.png",
        extracted_status="In Transit",
        extracted_location="Louisville, KY",
        processing_status=ProcessingStatus.COMPLETED,
        captured_at=datetime(2026, 1, 12, 10, 0, tzinfo=timezone.utc),
    )


class TestSystemEndpoints:
    def test_root(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "Trackproof API"

    def test_health(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestSync:
    def test_sync_success(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        """Test a completed sync returns the result value."""
        orchestrator.sync_one.return_value = SyncResult(
            success=True,
            outcome=SyncOutcome.COMPLETED,
            shipment_id="42",
            tracking_number=TRACKING,
            carrier="UPS",
            record_id=17,
            record_ids=[17],
            attempts=1,
            reconciliation_delivered=True,
        )

        response = client.post(
            "/api/v1/tracking/sync",
            json={"shipment_id": "42", "tracking_number": TRACKING, "carrier": "UPS"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["outcome"] == "completed"
        assert data["record_id"] == 17
        orchestrator.sync_one.assert_awaited_once_with("42", TRACKING, "UPS")

    def test_sync_unsupported_carrier_is_not_http_error(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        """Test unsupported carriers come back as success=false, not 4xx."""
        orchestrator.sync_one.return_value = SyncResult(
            success=False,
            outcome=SyncOutcome.UNSUPPORTED_CARRIER,
            tracking_number=TRACKING,
            carrier="Pony Express",
            error="Unsupported carrier: Pony Express",
        )

        response = client.post(
            "/api/v1/tracking/sync",
            json={"tracking_number": TRACKING, "carrier": "Pony Express"},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "unsupported_carrier"
        assert response.json()["success"] is False

    def test_sync_blank_tracking_number(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        orchestrator.sync_one.side_effect = ValueError(
            "Tracking number must not be empty"
        )

        response = client.post(
            "/api/v1/tracking/sync", json={"tracking_number": "  ", "carrier": "UPS"}
        )

        assert response.status_code == 400

    def test_sync_missing_fields(self, client: TestClient, mock_db_initialized):
        response = client.post("/api/v1/tracking/sync", json={"carrier": "UPS"})
        assert response.status_code == 422

    def test_sync_storage_error(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        orchestrator.sync_one.side_effect = OSError("bucket unavailable")

        response = client.post(
            "/api/v1/tracking/sync", json={"tracking_number": TRACKING, "carrier": "UPS"}
        )

        assert response.status_code == 500
        assert "bucket unavailable" in response.json()["detail"]

    def test_sync_db_not_available(self, client: TestClient):
        """Test 503 when database is not initialized."""
        with patch("trackproof.api.routes.tracking.DatabaseConnection") as mock_db:
            mock_db.is_initialized.return_value = False

            response = client.post(
                "/api/v1/tracking/sync",
                json={"tracking_number": TRACKING, "carrier": "UPS"},
            )

        assert response.status_code == 503


class TestSyncBatch:
    def test_batch(self, client: TestClient, orchestrator: MagicMock, mock_db_initialized):
        orchestrator.sync_batch.return_value = BatchSyncResult(
            results=[
                BatchItemResult(
                    tracking_number=TRACKING,
                    carrier="UPS",
                    success=True,
                    outcome=SyncOutcome.COMPLETED,
                    record_id=17,
                ),
                BatchItemResult(
                    tracking_number="X1",
                    carrier="UPS",
                    success=False,
                    outcome=SyncOutcome.FAILED,
                    error="captcha",
                ),
            ],
            total=2,
            succeeded=1,
            failed=1,
        )

        response = client.post(
            "/api/v1/tracking/sync-batch",
            json={
                "shipments": [
                    {"tracking_number": TRACKING, "carrier": "UPS"},
                    {"tracking_number": "X1", "carrier": "UPS"},
                ]
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        selector = orchestrator.sync_batch.await_args.args[0]
        assert [s.tracking_number for s in selector.shipments] == [TRACKING, "X1"]

    def test_batch_requires_targets(self, client: TestClient, mock_db_initialized):
        response = client.post("/api/v1/tracking/sync-batch", json={})
        assert response.status_code == 400

    def test_batch_filter_without_selector(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        orchestrator.sync_batch.side_effect = ValueError(
            "Filtered batch sync needs a shipment selector"
        )

        response = client.post(
            "/api/v1/tracking/sync-batch", json={"filter": {"carrier": "UPS"}}
        )

        assert response.status_code == 400


class TestCancel:
    def test_cancel(self, client: TestClient, orchestrator: MagicMock):
        orchestrator.cancel.return_value = True

        response = client.post(
            "/api/v1/tracking/cancel", json={"tracking_number": TRACKING, "carrier": "UPS"}
        )

        assert response.status_code == 200
        assert response.json() == {"cancelled": True}
        orchestrator.cancel.assert_called_once_with(TRACKING, "UPS")


class TestEvidence:
    def test_history(
        self,
        client: TestClient,
        orchestrator: MagicMock,
        sample_record: TrackingEvidenceRecord,
        mock_db_initialized,
    ):
        orchestrator.store.history.return_value = [sample_record]

        response = client.get("/api/v1/tracking/history", params={"shipment_id": "42"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["records"][0]["extracted_status"] == "In Transit"
        orchestrator.store.history.assert_called_once_with(
            shipment_id="42", tracking_number=None, limit=10
        )

    def test_history_requires_filter(self, client: TestClient, mock_db_initialized):
        response = client.get("/api/v1/tracking/history")
        assert response.status_code == 400

    def test_latest_by_tracking_number(
        self,
        client: TestClient,
        orchestrator: MagicMock,
        sample_record: TrackingEvidenceRecord,
        mock_db_initialized,
    ):
        orchestrator.store.latest_for_tracking.return_value = sample_record

        response = client.get(
            "/api/v1/tracking/latest",
            params={"tracking_number": TRACKING, "shipment_id": "42"},
        )

        assert response.status_code == 200
        assert response.json()["id"] == 17
        orchestrator.store.latest_for_shipment.assert_not_called()

    def test_latest_not_found(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        orchestrator.store.latest_for_shipment.return_value = None

        response = client.get("/api/v1/tracking/latest", params={"shipment_id": "42"})

        assert response.status_code == 404

    def test_list_records_invalid_status(self, client: TestClient, mock_db_initialized):
        response = client.get("/api/v1/tracking/records", params={"status": "done"})
        assert response.status_code == 400

    def test_list_records(
        self,
        client: TestClient,
        orchestrator: MagicMock,
        sample_record: TrackingEvidenceRecord,
        mock_db_initialized,
    ):
        orchestrator.store.list_records.return_value = [sample_record]

        response = client.get(
            "/api/v1/tracking/records", params={"status": "completed", "limit": 5}
        )

        assert response.status_code == 200
        orchestrator.store.list_records.assert_called_once_with(
            status=ProcessingStatus.COMPLETED, limit=5
        )

    def test_get_record_not_found(
        self, client: TestClient, orchestrator: MagicMock, mock_db_initialized
    ):
        orchestrator.store.get.side_effect = RecordNotFoundError(99)

        response = client.get("/api/v1/tracking/records/99")

        assert response.status_code == 404
