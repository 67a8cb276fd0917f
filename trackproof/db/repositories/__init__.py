"""
Repository implementations for Trackproof database.

Repositories provide a clean interface for database operations,
encapsulating SQLAlchemy queries and Pydantic model conversions.
"""

from trackproof.db.repositories.evidence import EvidenceRepository
from trackproof.db.repositories.lease import LeaseRepository

__all__ = [
    "EvidenceRepository",
    "LeaseRepository",
]
