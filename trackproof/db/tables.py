"""
SQLAlchemy Table definitions for Trackproof database.

These Table objects mirror the schema defined in migrations/001_tracking_evidence.sql.
Uses SQLAlchemy Core (not ORM) for flexibility with Pydantic models.
JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in tests).
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
RecordIdType = BigInteger().with_variant(Integer(), "sqlite")

# =============================================================================
# TABLE: tracking_evidence
# =============================================================================

tracking_evidence = Table(
    "tracking_evidence",
    metadata,
    Column("id", RecordIdType, primary_key=True, autoincrement=True),
    Column("shipment_id", String(255)),
    # Attempt inputs
    Column("tracking_number", String(255), nullable=False),
    Column("carrier", String(50), nullable=False),
    Column("carrier_url", Text, nullable=False),
    Column("sync_run_id", String(64)),
    Column("attempt_number", Integer, nullable=False, default=1),
    # Captured blob
    Column("screenshot_ref", Text),
    Column("screenshot_sha256", String(64)),
    # Extraction (completed only)
    Column("extracted_status", String(255)),
    Column("extracted_location", Text),
    Column("extracted_eta", String(64)),
    Column("extracted_details_raw", JSONType),
    Column("low_confidence", Boolean, nullable=False, default=False),
    # Status
    Column("processing_status", String(20), nullable=False, default="pending"),
    Column("error_kind", String(50)),
    Column("error_message", Text),
    # Timestamps
    Column("captured_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("finished_at", DateTime(timezone=True)),
    Index("ix_tracking_evidence_shipment_created", "shipment_id", "created_at"),
    Index("ix_tracking_evidence_tracking_carrier", "tracking_number", "carrier"),
    Index("ix_tracking_evidence_status", "processing_status"),
)

# =============================================================================
# TABLE: sync_leases
# =============================================================================

sync_leases = Table(
    "sync_leases",
    metadata,
    Column("lease_key", String(320), primary_key=True),
    Column("owner", String(64), nullable=False),
    Column("acquired_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
)
