"""
Per-tracking-key leases.

A lease keeps two syncs from working on the same (tracking_number, carrier)
at once. Acquire never waits: a live lease means the caller reports
"already in progress". Every lease expires, so a crashed worker cannot wedge
a key forever. Release is idempotent and only removes the caller's own lease.
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from trackproof.db.unit_of_work import UnitOfWork
from trackproof.errors import LeaseConflictError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaseKey:
    """Lease key: one tracking number at one carrier"""

    tracking_number: str
    carrier: str

    def __str__(self) -> str:
        return f"{self.carrier}:{self.tracking_number}"


@dataclass(frozen=True)
class LeaseHandle:
    """Proof of lease ownership returned by acquire"""

    key: LeaseKey
    owner: str
    acquired_at: datetime
    ttl_seconds: float


class LeaseManager(ABC):
    """Mutual exclusion over tracking keys with TTL-based recovery."""

    def __init__(self, ttl_seconds: float):
        if ttl_seconds <= 0:
            raise ValueError("Lease TTL must be positive")
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    def acquire(self, key: LeaseKey, owner: str | None = None) -> LeaseHandle:
        """
        Take the lease for key without waiting.

        Args:
            key: Tracking key to lock
            owner: Owner token (generated if omitted)

        Returns:
            LeaseHandle for release/renew

        Raises:
            LeaseConflictError: If a live lease exists for key
        """
        pass

    @abstractmethod
    def release(self, handle: LeaseHandle) -> None:
        """Release the lease; no-op if already released or reclaimed."""
        pass

    @abstractmethod
    def renew(self, handle: LeaseHandle) -> bool:
        """
        Extend a lease still held by the handle's owner.

        Returns:
            False if the lease expired or is now held by someone else
        """
        pass

    @abstractmethod
    def is_held(self, key: LeaseKey) -> bool:
        """Whether a live lease exists for key."""
        pass


class InMemoryLeaseManager(LeaseManager):
    """Process-local lease table guarded by a lock."""

    def __init__(
        self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (owner, expires_at on the clock)
        self._leases: dict[LeaseKey, tuple[str, float]] = {}

    def acquire(self, key: LeaseKey, owner: str | None = None) -> LeaseHandle:
        owner = owner or uuid4().hex
        with self._lock:
            now = self._clock()
            current = self._leases.get(key)
            if current is not None and current[1] > now:
                raise LeaseConflictError(key.tracking_number, key.carrier)
            if current is not None:
                logger.warning("Reclaiming expired lease %s from %s", key, current[0])
            self._leases[key] = (owner, now + self.ttl_seconds)

        return LeaseHandle(
            key=key,
            owner=owner,
            acquired_at=datetime.now(timezone.utc),
            ttl_seconds=self.ttl_seconds,
        )

    def release(self, handle: LeaseHandle) -> None:
        with self._lock:
            current = self._leases.get(handle.key)
            if current is not None and current[0] == handle.owner:
                del self._leases[handle.key]

    def renew(self, handle: LeaseHandle) -> bool:
        with self._lock:
            now = self._clock()
            current = self._leases.get(handle.key)
            if current is None or current[0] != handle.owner or current[1] <= now:
                return False
            self._leases[handle.key] = (handle.owner, now + self.ttl_seconds)
            return True

    def is_held(self, key: LeaseKey) -> bool:
        with self._lock:
            current = self._leases.get(key)
            return current is not None and current[1] > self._clock()


class DatabaseLeaseManager(LeaseManager):
    """
    Lease table shared by all worker instances (sync_leases).

    Acquire deletes an expired row for the key and inserts a new one in a
    single transaction; the primary key makes concurrent acquires exclusive.
    """

    def __init__(
        self,
        ttl_seconds: float,
        uow_factory: Callable[[], UnitOfWork] = UnitOfWork,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__(ttl_seconds)
        self._uow_factory = uow_factory
        self._clock = clock

    def acquire(self, key: LeaseKey, owner: str | None = None) -> LeaseHandle:
        owner = owner or uuid4().hex
        now = self._clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        try:
            with self._uow_factory() as uow:
                if uow.leases.delete_expired(str(key), now):
                    logger.warning("Reclaiming expired lease %s", key)
                uow.leases.insert(str(key), owner, now, expires_at)
                uow.commit()
        except IntegrityError as e:
            raise LeaseConflictError(key.tracking_number, key.carrier) from e

        return LeaseHandle(
            key=key, owner=owner, acquired_at=now, ttl_seconds=self.ttl_seconds
        )

    def release(self, handle: LeaseHandle) -> None:
        with self._uow_factory() as uow:
            uow.leases.delete_owned(str(handle.key), handle.owner)
            uow.commit()

    def renew(self, handle: LeaseHandle) -> bool:
        now = self._clock()
        with self._uow_factory() as uow:
            extended = uow.leases.extend(
                str(handle.key),
                handle.owner,
                now,
                now + timedelta(seconds=self.ttl_seconds),
            )
            uow.commit()
        return extended

    def is_held(self, key: LeaseKey) -> bool:
        with self._uow_factory() as uow:
            expires_at = uow.leases.get_expiry(str(key))
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > self._clock()


def build_lease_manager(ttl_seconds: float) -> LeaseManager:
    """
    Build the lease manager selected by LEASE_BACKEND.

    "memory" (default) only coordinates syncs inside one process; use
    "database" when several API or worker instances share the database.
    """
    backend = os.getenv("LEASE_BACKEND", "memory").lower()
    if backend == "database":
        return DatabaseLeaseManager(ttl_seconds)
    if backend == "memory":
        return InMemoryLeaseManager(ttl_seconds)
    raise ValueError(f"Unknown LEASE_BACKEND: {backend}")
