

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, Mapping, Optional

from lead_relay.api.schemas.lead import LeadEvent, ListingAttributes, NormalizedLead, Portal
from lead_relay.clients.upstream import UpstreamClient
from lead_relay.errors import AuthenticityError, UpstreamHttpError

logger = logging.getLogger(__name__)


class PortalAdapter(ABC):
    """
    Everything portal-specific about turning a webhook into a lead.

    Subclasses parse the inbound body, optionally check its authenticity,
    fetch supplementary records and pull lead fields out of their payload
    shape. ``normalize`` then applies the shared defaulting rules and the
    adapter's capabilities:

    - has_agent_data: agent name/phone/email are kept
    - has_listing_price: listing price is kept, otherwise 0
    - requires_signature_check: requests must carry a valid signature
    """

    portal: Portal
    default_name: str = "Portal Lead"
    has_agent_data: bool = False
    has_listing_price: bool = False
    requires_signature_check: bool = False

    def __init__(self, default_currency: str = "AED"):
        self.default_currency = default_currency

    def verify_authenticity(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        """
        Raise AuthenticityError when the request cannot be trusted.

        Adapters that require a signature must override this; the base
        implementation rejects everything for them.
        """
        if self.requires_signature_check:
            raise AuthenticityError(f"No signature check implemented for {self.portal.value}")

    @abstractmethod
    def parse_event(self, body: Dict[str, Any]) -> LeadEvent:
        """Read kind, ids and embedded payload out of the request body."""
        ...

    def needs_lead_fetch(self, event: LeadEvent) -> bool:
        """Whether the event only references a lead that must be read upstream."""
        return False

    async def enrich(self, lead: Dict[str, Any], upstream: Optional[UpstreamClient]) -> Dict[str, Any]:
        """Collect supplementary records keyed by kind; 'lead' is always present."""
        return {"lead": lead}

    @abstractmethod
    def extract(self, event: LeadEvent, enrichment: Dict[str, Any]) -> Dict[str, Any]:
        """Map the portal payload onto NormalizedLead field names."""
        ...

    def normalize(self, event: LeadEvent, enrichment: Dict[str, Any]) -> NormalizedLead:
        """Build the NormalizedLead for an event and its enrichment."""
        fields = {k: v for k, v in self.extract(event, enrichment).items() if v is not None}

        if not fields.get("contact_name"):
            fields["contact_name"] = self.default_name
            fields["name_is_default"] = True
        fields["currency"] = fields.get("currency") or self.default_currency
        if not self.has_listing_price or fields.get("listing_price") is None:
            fields["listing_price"] = 0
        if not self.has_agent_data:
            for key in ("agent_name", "agent_phone", "agent_email", "agent_portal_id"):
                fields.pop(key, None)
        if isinstance(fields.get("attributes"), dict):
            fields["attributes"] = ListingAttributes(**fields["attributes"])

        return NormalizedLead(**fields)

    @staticmethod
    async def lookup(label: str, call: Awaitable[Optional[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
        """Await an optional upstream lookup; HTTP failures leave it empty."""
        try:
            return await call
        except UpstreamHttpError as e:
            logger.warning(f"Could not fetch {label} for enrichment: {e}")
            return None
