"""
Trackproof Worker Service

Background worker for scheduled and bulk tasks:
- Single tracking sync (Cloud Tasks)
- Batch tracking sync (Cloud Scheduler re-syncs, bulk imports)
- Stale evidence sweep
"""

__all__ = []
