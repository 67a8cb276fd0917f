"""
Wiring for the API and worker services.

Both services share the same startup: connect the database when configured,
build one orchestrator for the process and keep it on `app.state`.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from trackproof.agents.tracking_extractor import GeminiVisionExtractor
from trackproof.capture.screenshot import PlaywrightScreenshotCapture
from trackproof.carriers.registry import build_default_registry
from trackproof.config import DEFAULT_MODEL, SyncSettings
from trackproof.db import DatabaseConnection
from trackproof.sync.evidence_store import EvidenceStore
from trackproof.sync.leases import build_lease_manager
from trackproof.sync.orchestrator import SyncOrchestrator
from trackproof.sync.reconciliation import TrackedShipmentSelector, build_publisher
from trackproof.utils.blob_storage import build_blob_storage

logger = logging.getLogger(__name__)


def build_orchestrator(settings: SyncSettings | None = None) -> SyncOrchestrator:
    """Build a SyncOrchestrator with production collaborators from the environment."""
    settings = settings or SyncSettings.from_env()
    store = EvidenceStore(build_blob_storage())

    orchestrator = SyncOrchestrator(
        registry=build_default_registry(),
        capture=PlaywrightScreenshotCapture(),
        extractor=GeminiVisionExtractor(),
        store=store,
        leases=build_lease_manager(settings.effective_lease_ttl_seconds),
        publisher=build_publisher(),
        settings=settings,
        shipment_selector=TrackedShipmentSelector(store),
    )
    logger.info(
        "Sync orchestrator ready: carriers=%s, concurrency=%d, max_attempts=%d",
        orchestrator.registry.supported_carriers(),
        settings.concurrency,
        settings.max_attempts,
    )
    return orchestrator


def init_database() -> bool:
    """
    Connect the database if DATABASE_URL or INSTANCE_CONNECTION_NAME is set.

    A missing or unreachable database does not stop the service; endpoints
    that need it answer 503 until it is available.

    Returns:
        True if the connection pool was created
    """
    if not os.getenv("DATABASE_URL") and not os.getenv("INSTANCE_CONNECTION_NAME"):
        print("   Database: Not configured (DATABASE_URL / INSTANCE_CONNECTION_NAME not set)")
        return False

    try:
        DatabaseConnection.initialize()
    except Exception as e:
        logger.exception("Database connection failed")
        print(f"   Database: Failed to connect - {e}")
        return False

    print("   Database: Connected")
    return True


def service_lifespan(display_name: str):
    """FastAPI lifespan for a Trackproof service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        print(f"🚀 Starting {display_name}...")
        print(f"   Environment: {os.getenv('GOOGLE_CLOUD_PROJECT', 'local')}")
        print(f"   Model: {DEFAULT_MODEL}")

        db_initialized = init_database()
        app.state.orchestrator = build_orchestrator()

        yield

        in_flight = app.state.orchestrator.in_flight()
        if in_flight:
            logger.warning("Shutting down with %d syncs in flight", len(in_flight))

        if db_initialized:
            DatabaseConnection.close()
            print("   Database: Connection closed")

        print(f"👋 Shutting down {display_name}...")

    return lifespan
