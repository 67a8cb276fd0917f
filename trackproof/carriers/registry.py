"""
Carrier registry: lookup table from carrier name to adapter.

The orchestrator only talks to the registry, so new carriers are added by
registering an adapter (or a CARRIER_URL_TEMPLATES entry), never by
branching on carrier names in pipeline code.
"""

import logging
import re

from trackproof.carriers.adapters import (
    BUILTIN_ADAPTERS,
    CarrierAdapter,
    TemplateCarrierAdapter,
)
from trackproof.config import get_carrier_url_templates
from trackproof.errors import UnsupportedCarrierError

logger = logging.getLogger(__name__)


def normalize_carrier_name(carrier: str) -> str:
    """Uppercase and collapse whitespace/punctuation in a carrier name."""
    collapsed = re.sub(r"[\s_\-\.]+", " ", carrier).strip()
    return collapsed.upper()


class CarrierRegistry:
    """Maps normalized carrier names and aliases to adapters."""

    def __init__(self, adapters: list[CarrierAdapter] | None = None):
        self._adapters: dict[str, CarrierAdapter] = {}
        self._lookup: dict[str, str] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: CarrierAdapter, replace: bool = False) -> None:
        """
        Register a carrier adapter under its code and aliases.

        Args:
            adapter: Adapter to register
            replace: Allow overriding an existing carrier code

        Raises:
            ValueError: If the code is already registered and replace is False
        """
        code = normalize_carrier_name(adapter.code)
        if code in self._adapters and not replace:
            raise ValueError(f"Carrier already registered: {code}")

        self._adapters[code] = adapter
        self._lookup[code] = code
        for alias in adapter.aliases:
            self._lookup[normalize_carrier_name(alias)] = code

    def get(self, carrier: str) -> CarrierAdapter:
        """
        Get the adapter for a carrier name or alias.

        Raises:
            UnsupportedCarrierError: If no adapter matches
        """
        code = self._lookup.get(normalize_carrier_name(carrier))
        if code is None:
            raise UnsupportedCarrierError(carrier)
        return self._adapters[code]

    def is_supported(self, carrier: str) -> bool:
        return normalize_carrier_name(carrier) in self._lookup

    def resolve_url(self, carrier: str, tracking_number: str) -> str:
        """
        Build the tracking URL for a carrier and tracking number.

        Raises:
            UnsupportedCarrierError: If the carrier is not registered
            ValueError: If the tracking number is blank
        """
        return self.get(carrier).resolve_url(tracking_number)

    def supported_carriers(self) -> list[str]:
        return sorted(self._adapters)


def build_default_registry(
    extra_templates: dict[str, str] | None = None,
) -> CarrierRegistry:
    """
    Build a registry with the built-in carriers plus configured templates.

    Args:
        extra_templates: Carrier name -> URL template. Defaults to the
            CARRIER_URL_TEMPLATES environment variable.

    Returns:
        Populated CarrierRegistry
    """
    registry = CarrierRegistry([adapter_cls() for adapter_cls in BUILTIN_ADAPTERS])

    templates = (
        extra_templates if extra_templates is not None else get_carrier_url_templates()
    )
    for name, template in templates.items():
        adapter = TemplateCarrierAdapter(
            code=normalize_carrier_name(name), url_template=template, display_name=name
        )
        registry.register(adapter, replace=True)
        logger.info("Registered configured carrier template: %s", adapter.code)

    return registry
