"""
Unit of Work pattern for transaction coordination.

Provides a clean way to work with multiple repositories within a single transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trackproof.db.connection import DatabaseConnection
from trackproof.db.repositories.evidence import EvidenceRepository
from trackproof.db.repositories.lease import LeaseRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class UnitOfWork:
    """
    Unit of Work for managing database transactions.

    Coordinates multiple repositories within a single transaction,
    ensuring atomic operations with automatic commit/rollback.

    Usage:
        with UnitOfWork() as uow:
            record = uow.evidence.create_pending(...)
            uow.commit()  # Explicit commit

        # Auto-rollback on exception:
        with UnitOfWork() as uow:
            uow.evidence.mark_processing(record_id)
            raise Exception("Something went wrong")
            # Transaction is automatically rolled back
    """

    def __init__(self):
        self._session: Session | None = None
        self._evidence: EvidenceRepository | None = None
        self._leases: LeaseRepository | None = None

    def __enter__(self) -> UnitOfWork:
        self._session = DatabaseConnection.get_session()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self._close()
        return False  # Don't suppress exceptions

    @property
    def session(self) -> Session:
        """Get current session (raises if not in context)."""
        if self._session is None:
            raise RuntimeError("UnitOfWork must be used within a context manager")
        return self._session

    @property
    def evidence(self) -> EvidenceRepository:
        """Evidence repository for this unit of work."""
        if self._evidence is None:
            self._evidence = EvidenceRepository(self.session)
        return self._evidence

    @property
    def leases(self) -> LeaseRepository:
        """Lease repository for this unit of work."""
        if self._leases is None:
            self._leases = LeaseRepository(self.session)
        return self._leases

    def commit(self):
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self):
        """Rollback the current transaction."""
        self.session.rollback()

    def _close(self):
        """Close the session."""
        if self._session is not None:
            self._session.close()
            self._session = None
            self._evidence = None
            self._leases = None
