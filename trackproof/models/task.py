"""
Worker task payload models.

These models define the structure of task payloads sent by Cloud Scheduler
or Cloud Tasks to the worker service endpoints.
"""

from typing import Any

from pydantic import BaseModel, Field

from trackproof.models.sync import SyncTarget


class SyncTrackingTask(SyncTarget):
    """Single tracking sync task payload"""


class SyncBatchTask(BaseModel):
    """Batch tracking sync task payload"""

    shipments: list[SyncTarget] = Field(
        default_factory=list, description="Explicit targets to sync"
    )
    filter: dict[str, Any] | None = Field(
        default=None, description="Filter passed to the shipment selector"
    )


class ReapStaleTask(BaseModel):
    """Stale evidence sweep task payload"""

    older_than_seconds: int = Field(
        default=3600,
        ge=60,
        description="Fail pending/processing records older than this",
    )
