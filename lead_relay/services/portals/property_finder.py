

import hmac
import logging
from typing import Any, Dict, List, Mapping, Optional

from lead_relay.api.schemas.lead import LeadEvent, Portal
from lead_relay.clients.upstream import UpstreamClient
from lead_relay.errors import AuthenticityError
from lead_relay.services.normalize import clean_email, clean_text, normalize_phone, pick, to_number
from lead_relay.services.portals.base import PortalAdapter

logger = logging.getLogger(__name__)


def _contact(contacts: Any, *types: str) -> Optional[str]:
    """First sender contact value of one of the given types."""
    if not isinstance(contacts, list):
        return None
    for wanted in types:
        for entry in contacts:
            if isinstance(entry, dict) and str(entry.get("type", "")).lower() == wanted:
                value = clean_text(entry.get("value"))
                if value:
                    return value
    return None


def _product(listing: Dict[str, Any]) -> Optional[str]:
    products: Any = listing.get("products") or listing.get("product")
    if isinstance(products, list):
        names: List[str] = []
        for item in products:
            name = item.get("type") or item.get("name") if isinstance(item, dict) else item
            if clean_text(name):
                names.append(str(name))
        return ", ".join(names) or None
    if isinstance(products, dict):
        return ", ".join(k for k, v in products.items() if v) or None
    return clean_text(products)


class PropertyFinderAdapter(PortalAdapter):
    """
    Atlas push API of Property Finder.

    Events look like ``{id, type, entity: {id}, payload}``. The payload is
    often missing or partial right after ``lead.created`` fires, in which
    case the lead is read back from the Atlas API together with its
    listing and the agent behind the public profile.
    """

    portal = Portal.PROPERTY_FINDER
    default_name = "Property Finder Lead"
    has_agent_data = True
    has_listing_price = True

    def __init__(self, default_currency: str = "AED", api_key_secret: Optional[str] = None):
        super().__init__(default_currency)
        self.api_key_secret = api_key_secret

    def verify_authenticity(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.api_key_secret:
            return
        supplied = headers.get("x-api-key") or ""
        if not hmac.compare_digest(supplied.encode(), self.api_key_secret.encode()):
            raise AuthenticityError("Invalid or missing x-api-key")

    def parse_event(self, body: Dict[str, Any]) -> LeadEvent:
        entity = body.get("entity") if isinstance(body.get("entity"), dict) else {}
        payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}
        lead_id = clean_text(entity.get("id")) or clean_text(payload.get("id"))
        return LeadEvent(
            portal=self.portal,
            kind=str(body.get("type") or body.get("event") or ""),
            event_id=clean_text(body.get("id")) or lead_id,
            lead_id=lead_id,
            payload=payload,
            raw=body,
        )

    def needs_lead_fetch(self, event: LeadEvent) -> bool:
        if not event.lead_id:
            return False
        return pick(event.payload, "sender.name", "sender.contacts", "email", "phone") is None

    async def enrich(self, lead: Dict[str, Any], upstream: Optional[UpstreamClient]) -> Dict[str, Any]:
        enrichment: Dict[str, Any] = {"lead": lead}
        if upstream is None:
            return enrichment

        profile_id = clean_text(pick(lead, "publicProfile.id", "agent.publicProfileId", "publicProfileId"))
        if profile_id:
            enrichment["user"] = await self.lookup("user", upstream.get_user(profile_id))

        listing_id = clean_text(pick(lead, "listing.id", "listingId"))
        if listing_id:
            enrichment["listing"] = await self.lookup("listing", upstream.get_listing(listing_id))

        return enrichment

    def extract(self, event: LeadEvent, enrichment: Dict[str, Any]) -> Dict[str, Any]:
        lead = enrichment.get("lead") or {}
        user = enrichment.get("user") or {}
        listing = enrichment.get("listing") or {}
        contacts = pick(lead, "sender.contacts")

        channel = clean_text(pick(lead, "channel", "source"))
        phone = normalize_phone(_contact(contacts, "phone", "mobile") or pick(lead, "sender.phone", "phone"))
        whatsapp = normalize_phone(_contact(contacts, "whatsapp"))
        if not whatsapp and channel and channel.lower() == "whatsapp":
            whatsapp = phone

        first_last = " ".join(
            part for part in (clean_text(user.get("firstName")), clean_text(user.get("lastName"))) if part
        )

        return {
            "contact_name": clean_text(pick(lead, "sender.name", "name")),
            "contact_email": clean_email(_contact(contacts, "email") or pick(lead, "sender.email", "email")),
            "contact_phone": phone,
            "channel": channel,
            "listing_reference": clean_text(pick(listing, "reference") or pick(lead, "listing.reference", "listing_id")),
            "listing_title": clean_text(pick(listing, "title.en", "title") or pick(lead, "listing.title")),
            "listing_price": to_number(
                pick(
                    listing,
                    "price.amounts.sale",
                    "price.amounts.yearly",
                    "price.amounts.monthly",
                    "price.value",
                    "price",
                )
                or pick(lead, "budget")
            ),
            "currency": clean_text(pick(listing, "price.currency") or pick(lead, "currency")),
            "response_url": clean_text(pick(lead, "responseLink", "response_link")),
            "enquiry_date": clean_text(pick(lead, "createdAt", "created_at")),
            "whatsapp_number": whatsapp,
            "product": _product(listing),
            "agent_name": clean_text(pick(user, "publicProfile.name")) or first_last or None,
            "agent_phone": normalize_phone(pick(user, "publicProfile.phone", "mobile", "phone")),
            "agent_email": clean_email(pick(user, "publicProfile.email", "email")),
            "agent_portal_id": clean_text(pick(lead, "publicProfile.id", "agent.publicProfileId", "publicProfileId")),
            "attributes": {
                "bedrooms": clean_text(pick(listing, "bedrooms")),
                "size": to_number(pick(listing, "size")),
                "furnishing": clean_text(pick(listing, "furnishingType", "furnishing")),
                "category": clean_text(pick(listing, "category")),
                "property_type": clean_text(pick(listing, "type", "propertyType")),
                "verification_status": clean_text(pick(listing, "verificationStatus")),
                "quality_score": to_number(pick(listing, "qualityScore.value", "qualityScore")),
            },
        }
