"""
Runtime configuration for Trackproof services.

Values come from environment variables (loaded from .env by the service
entry points). Sync tuning knobs are bundled into SyncSettings so the
orchestrator can be built with explicit values in tests.
"""

import json
import os

from pydantic import BaseModel, Field

DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "gemini-2.5-flash")

# Minimum vision confidence before a reading is flagged as low confidence
MIN_TRACKING_CONFIDENCE = float(os.getenv("MIN_TRACKING_CONFIDENCE", "0.7"))


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


class SyncSettings(BaseModel):
    """Tuning knobs for capture attempts, retries and leases."""

    concurrency: int = Field(
        default=3, ge=1, description="Max parallel sync attempts in a batch"
    )
    max_attempts: int = Field(
        default=3, ge=1, description="Attempts per sync before giving up"
    )
    backoff_base_seconds: float = Field(default=2.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    backoff_max_seconds: float = Field(default=30.0, ge=0.0)
    backoff_jitter_seconds: float = Field(default=1.0, ge=0.0)
    capture_timeout_seconds: float = Field(default=45.0, gt=0.0)
    extraction_timeout_seconds: float = Field(default=60.0, gt=0.0)
    attempt_margin_seconds: float = Field(default=15.0, ge=0.0)
    lease_ttl_seconds: float | None = Field(
        default=None,
        description="Lease TTL; defaults to 3x the attempt deadline when unset",
    )

    @property
    def attempt_deadline_seconds(self) -> float:
        """Upper bound on a single capture + extraction attempt."""
        return (
            self.capture_timeout_seconds
            + self.extraction_timeout_seconds
            + self.attempt_margin_seconds
        )

    @property
    def effective_lease_ttl_seconds(self) -> float:
        if self.lease_ttl_seconds is not None:
            return self.lease_ttl_seconds
        return 3 * self.attempt_deadline_seconds

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from SYNC_*, *_TIMEOUT_SECONDS and LEASE_* variables."""
        lease_ttl = os.getenv("LEASE_TTL_SECONDS")
        return cls(
            concurrency=_env_int("SYNC_CONCURRENCY", 3),
            max_attempts=_env_int("SYNC_MAX_ATTEMPTS", 3),
            backoff_base_seconds=_env_float("SYNC_BACKOFF_BASE_SECONDS", 2.0),
            backoff_factor=_env_float("SYNC_BACKOFF_FACTOR", 2.0),
            backoff_max_seconds=_env_float("SYNC_BACKOFF_MAX_SECONDS", 30.0),
            backoff_jitter_seconds=_env_float("SYNC_BACKOFF_JITTER_SECONDS", 1.0),
            capture_timeout_seconds=_env_float("CAPTURE_TIMEOUT_SECONDS", 45.0),
            extraction_timeout_seconds=_env_float("EXTRACTION_TIMEOUT_SECONDS", 60.0),
            attempt_margin_seconds=_env_float("ATTEMPT_MARGIN_SECONDS", 15.0),
            lease_ttl_seconds=float(lease_ttl) if lease_ttl else None,
        )


def get_carrier_url_templates() -> dict[str, str]:
    """
    Read extra carrier URL templates from CARRIER_URL_TEMPLATES.

    The value is a JSON object mapping carrier name to a URL template
    containing a {tracking} placeholder.

    Returns:
        Mapping of carrier name to URL template (empty if unset)

    Raises:
        ValueError: If the variable is not a JSON object of strings
    """
    raw = os.getenv("CARRIER_URL_TEMPLATES")
    if not raw:
        return {}

    templates = json.loads(raw)
    if not isinstance(templates, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in templates.items()
    ):
        raise ValueError(
            "CARRIER_URL_TEMPLATES must be a JSON object of carrier -> URL template"
        )
    return templates
