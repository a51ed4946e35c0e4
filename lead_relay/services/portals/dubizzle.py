

import hashlib
import hmac
from typing import Any, Dict, Mapping, Optional

from lead_relay.api.schemas.lead import LeadEvent, Portal
from lead_relay.errors import AuthenticityError
from lead_relay.services.normalize import clean_email, clean_text, normalize_phone, pick, to_number
from lead_relay.services.portals.base import PortalAdapter

SIGNATURE_HEADER = "x-dubizzle-signature"


def sign(secret: str, raw_body: bytes) -> str:
    """Hex MD5 of the shared secret followed by the exact request bytes."""
    return hashlib.md5(secret.encode("utf-8") + raw_body).hexdigest()


class DubizzleAdapter(PortalAdapter):
    """
    Dubizzle lead webhook.

    Requests are signed: the X-dubizzle-Signature header must equal
    MD5(secret + raw body). Dubizzle sends no agent block and no usable
    price, so both are left empty.
    """

    portal = Portal.DUBIZZLE
    default_name = "Dubizzle Lead"
    requires_signature_check = True

    def __init__(self, default_currency: str = "AED", secret: Optional[str] = None):
        super().__init__(default_currency)
        self.secret = secret

    def verify_authenticity(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret:
            raise AuthenticityError("Dubizzle signing secret is not configured")
        supplied = (headers.get(SIGNATURE_HEADER) or "").strip().lower()
        if not supplied or not hmac.compare_digest(supplied, sign(self.secret, raw_body)):
            raise AuthenticityError("Invalid Dubizzle signature")

    def parse_event(self, body: Dict[str, Any]) -> LeadEvent:
        return LeadEvent(
            portal=self.portal,
            kind=str(body.get("event") or body.get("type") or "lead.created"),
            event_id=clean_text(body.get("id") or body.get("lead_id")),
            payload=body,
            raw=body,
        )

    def extract(self, event: LeadEvent, enrichment: Dict[str, Any]) -> Dict[str, Any]:
        body = enrichment.get("lead") or event.payload
        channel = clean_text(pick(body, "channel", "lead_type", "source"))
        phone = normalize_phone(pick(body, "enquirer.phone_number", "enquirer.phone"))

        return {
            "contact_name": clean_text(pick(body, "enquirer.name")),
            "contact_email": clean_email(pick(body, "enquirer.email")),
            "contact_phone": phone,
            "channel": channel,
            "listing_reference": clean_text(pick(body, "listing.reference", "listing.id")),
            "listing_title": clean_text(pick(body, "listing.title")),
            "response_url": clean_text(pick(body, "listing.url", "response_link")),
            "enquiry_date": clean_text(pick(body, "created_at", "received_at")),
            "whatsapp_number": phone if channel and channel.lower() == "whatsapp" else None,
            "attributes": {
                "bedrooms": clean_text(pick(body, "listing.bedrooms")),
                "size": to_number(pick(body, "listing.size")),
                "category": clean_text(pick(body, "listing.category")),
                "property_type": clean_text(pick(body, "listing.property_type", "listing.type")),
            },
        }
