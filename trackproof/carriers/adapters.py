"""
Carrier tracking page adapters.

Each supported carrier is a CarrierAdapter variant that turns a raw tracking
number into the carrier's public tracking URL, along with hints for the
browser capture (what to wait for before taking the screenshot).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import quote


@dataclass(frozen=True)
class CaptureHints:
    """Per-carrier hints for the screenshot capture"""

    wait_selector: str | None = None  # CSS selector to wait for
    settle_ms: int = 2000  # Extra wait for dynamic content


def clean_tracking_number(tracking_number: str) -> str:
    """Trim and URL-encode a tracking number for use in a query string."""
    cleaned = tracking_number.strip()
    if not cleaned:
        raise ValueError("Tracking number must not be empty")
    return quote(cleaned, safe="")


class CarrierAdapter(ABC):
    """
    Base class for carrier variants.

    Subclasses set `code` (the normalized carrier name stored on evidence
    records) and implement build_url.
    """

    code: str
    display_name: str
    aliases: tuple[str, ...] = ()
    hints: CaptureHints = CaptureHints()

    @abstractmethod
    def build_url(self, tracking_number: str) -> str:
        """Build the tracking URL from an already-cleaned tracking number."""
        pass

    def resolve_url(self, tracking_number: str) -> str:
        return self.build_url(clean_tracking_number(tracking_number))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r})"


class TemplateCarrierAdapter(CarrierAdapter):
    """Carrier defined by a URL template with a {tracking} placeholder."""

    def __init__(
        self,
        code: str,
        url_template: str,
        display_name: str | None = None,
        aliases: tuple[str, ...] = (),
        hints: CaptureHints | None = None,
    ):
        if "{tracking}" not in url_template:
            raise ValueError(
                f"URL template for {code} must contain a {{tracking}} placeholder"
            )
        self.code = code
        self.url_template = url_template
        self.display_name = display_name or code
        self.aliases = aliases
        self.hints = hints or CaptureHints()

    def build_url(self, tracking_number: str) -> str:
        return self.url_template.replace("{tracking}", tracking_number)


# =============================================================================
# Built-in carriers
# =============================================================================


class UPSAdapter(CarrierAdapter):
    code = "UPS"
    display_name = "UPS"
    aliases = ("UNITED PARCEL SERVICE",)
    hints = CaptureHints(wait_selector=".ups-tracking_detail", settle_ms=3000)

    def build_url(self, tracking_number: str) -> str:
        return f"https://www.ups.com/track?track=yes&trackNums={tracking_number}"


class FedExAdapter(CarrierAdapter):
    code = "FEDEX"
    display_name = "FedEx"
    aliases = ("FED EX", "FEDERAL EXPRESS")
    hints = CaptureHints(wait_selector="#trk-summary-container", settle_ms=3000)

    def build_url(self, tracking_number: str) -> str:
        return f"https://www.fedex.com/fedextrack/?trknbr={tracking_number}"


class USPSAdapter(CarrierAdapter):
    code = "USPS"
    display_name = "USPS"
    aliases = ("US POSTAL SERVICE", "UNITED STATES POSTAL SERVICE")
    hints = CaptureHints(wait_selector=".tracking-summary", settle_ms=2000)

    def build_url(self, tracking_number: str) -> str:
        return f"https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}"


class DHLAdapter(CarrierAdapter):
    code = "DHL"
    display_name = "DHL"
    aliases = ("DHL EXPRESS",)

    def build_url(self, tracking_number: str) -> str:
        return (
            "https://www.dhl.com/us-en/home/tracking/tracking-express.html"
            f"?submit=1&tracking-id={tracking_number}"
        )


class OldDominionAdapter(CarrierAdapter):
    code = "OLD DOMINION"
    display_name = "Old Dominion"
    aliases = ("ODFL", "OLD DOMINION FREIGHT LINE")
    hints = CaptureHints(wait_selector=".tracking-results", settle_ms=2000)

    def build_url(self, tracking_number: str) -> str:
        return f"https://www.odfl.com/Trace/standardResult.faces?pro={tracking_number}"


class EstesAdapter(CarrierAdapter):
    code = "ESTES"
    display_name = "Estes"
    aliases = ("ESTES EXPRESS", "ESTES EXPRESS LINES")
    hints = CaptureHints(wait_selector=".shipment-details", settle_ms=2000)

    def build_url(self, tracking_number: str) -> str:
        return (
            f"https://www.estes-express.com/shipment-tracking/?pro={tracking_number}"
        )


BUILTIN_ADAPTERS: tuple[type[CarrierAdapter], ...] = (
    UPSAdapter,
    FedExAdapter,
    USPSAdapter,
    DHLAdapter,
    OldDominionAdapter,
    EstesAdapter,
)
