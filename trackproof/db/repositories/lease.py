"""
Lease repository for shared sync coordination.

The lease key is the primary key, so concurrent inserts for the same key
race on the unique constraint and exactly one wins.
"""

from datetime import datetime

from sqlalchemy import delete, insert, select, update
from sqlalchemy.orm import Session

from trackproof.db.tables import sync_leases


class LeaseRepository:
    """Row-level operations on the sync_leases table."""

    def __init__(self, session: Session):
        self.session = session

    def delete_expired(self, lease_key: str, now: datetime) -> bool:
        """
        Remove the lease for a key if it has expired.

        Returns:
            True if an expired lease was removed
        """
        stmt = (
            delete(sync_leases)
            .where(sync_leases.c.lease_key == lease_key)
            .where(sync_leases.c.expires_at <= now)
        )
        return self.session.execute(stmt).rowcount > 0

    def insert(
        self, lease_key: str, owner: str, acquired_at: datetime, expires_at: datetime
    ) -> None:
        """
        Insert a lease row.

        Raises:
            sqlalchemy.exc.IntegrityError: If a lease for the key exists
        """
        self.session.execute(
            insert(sync_leases).values(
                lease_key=lease_key,
                owner=owner,
                acquired_at=acquired_at,
                expires_at=expires_at,
            )
        )

    def extend(
        self, lease_key: str, owner: str, now: datetime, expires_at: datetime
    ) -> bool:
        """
        Push out the expiry of a live lease still held by owner.

        Returns:
            True if the lease was extended
        """
        stmt = (
            update(sync_leases)
            .where(sync_leases.c.lease_key == lease_key)
            .where(sync_leases.c.owner == owner)
            .where(sync_leases.c.expires_at > now)
            .values(expires_at=expires_at)
        )
        return self.session.execute(stmt).rowcount > 0

    def delete_owned(self, lease_key: str, owner: str) -> bool:
        """
        Remove a lease only if owner still holds it.

        Returns:
            True if the lease was removed
        """
        stmt = (
            delete(sync_leases)
            .where(sync_leases.c.lease_key == lease_key)
            .where(sync_leases.c.owner == owner)
        )
        return self.session.execute(stmt).rowcount > 0

    def get_expiry(self, lease_key: str) -> datetime | None:
        """Expiry of the lease row for a key, if any."""
        stmt = select(sync_leases.c.expires_at).where(
            sync_leases.c.lease_key == lease_key
        )
        return self.session.execute(stmt).scalar_one_or_none()
