"""
Carrier adapters and registry.
"""

from trackproof.carriers.adapters import (
    CaptureHints,
    CarrierAdapter,
    TemplateCarrierAdapter,
)
from trackproof.carriers.registry import (
    CarrierRegistry,
    build_default_registry,
    normalize_carrier_name,
)

__all__ = [
    "CaptureHints",
    "CarrierAdapter",
    "CarrierRegistry",
    "TemplateCarrierAdapter",
    "build_default_registry",
    "normalize_carrier_name",
]
