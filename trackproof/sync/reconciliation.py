"""
Case-management collaborators.

ReconciliationPublisher receives one event per completed evidence record.
Deciding whether the reading is a meaningful status change is left to the
receiving system. ShipmentSelector turns a batch filter into sync targets.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import requests

from trackproof.models.evidence import ReconciliationEvent
from trackproof.models.sync import SyncTarget

logger = logging.getLogger(__name__)


class ReconciliationPublisher(ABC):
    """Delivers reconciliation events to case management."""

    @abstractmethod
    async def publish(self, event: ReconciliationEvent) -> None:
        """
        Deliver one event.

        Raises:
            Exception: Any delivery failure; the caller logs it and keeps
                the evidence record as written
        """
        pass


class LoggingReconciliationPublisher(ReconciliationPublisher):
    """Writes events to the log (default when no webhook is configured)."""

    async def publish(self, event: ReconciliationEvent) -> None:
        logger.info(
            "Reconciliation event: %s %s -> %s @ %s (record %s)",
            event.carrier,
            event.tracking_number,
            event.extracted_status,
            event.extracted_location,
            event.record_id,
            extra={"json_fields": event.model_dump(mode="json")},
        )


class WebhookReconciliationPublisher(ReconciliationPublisher):
    """POSTs events as JSON to a case-management webhook."""

    def __init__(self, url: str, token: str | None = None, timeout: float = 10.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    def _post(self, payload: dict) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = requests.post(
            self.url, json=payload, headers=headers, timeout=self.timeout
        )
        response.raise_for_status()

    async def publish(self, event: ReconciliationEvent) -> None:
        # requests is blocking; keep it off the event loop
        await asyncio.to_thread(self._post, event.model_dump(mode="json"))
        logger.info("Delivered reconciliation event for record %s", event.record_id)


def build_publisher() -> ReconciliationPublisher:
    """Webhook publisher if RECONCILIATION_WEBHOOK_URL is set, else logging."""
    url = os.getenv("RECONCILIATION_WEBHOOK_URL")
    if url:
        return WebhookReconciliationPublisher(
            url, token=os.getenv("RECONCILIATION_WEBHOOK_TOKEN")
        )
    return LoggingReconciliationPublisher()


class ShipmentSelector(ABC):
    """Resolves a batch filter to the shipments to sync."""

    @abstractmethod
    def select(self, filter: dict[str, Any]) -> list[SyncTarget]:
        pass


class TrackedShipmentSelector(ShipmentSelector):
    """
    Re-selects shipments that already have evidence.

    Filter keys:
        carrier: Only this carrier (normalized code)
        exclude_statuses: Skip keys whose latest reading has one of these
            statuses (case-insensitive), default ["Delivered"]
        limit: Maximum number of targets, stalest reading first, default 100
    """

    def __init__(self, store):
        self.store = store

    def select(self, filter: dict[str, Any]) -> list[SyncTarget]:
        records = self.store.latest_per_tracking(
            carrier=filter.get("carrier"),
            exclude_statuses=filter.get("exclude_statuses", ["Delivered"]),
            limit=int(filter.get("limit", 100)),
        )
        return [
            SyncTarget(
                shipment_id=record.shipment_id,
                tracking_number=record.tracking_number,
                carrier=record.carrier,
            )
            for record in records
        ]
