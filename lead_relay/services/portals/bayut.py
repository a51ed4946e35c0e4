

from typing import Any, Dict

from lead_relay.api.schemas.lead import LeadEvent, Portal
from lead_relay.services.normalize import clean_email, clean_text, normalize_phone, pick, to_number
from lead_relay.services.portals.base import PortalAdapter


class BayutAdapter(PortalAdapter):
    """Bayut lead webhook: enquirer, agent and listing arrive inline."""

    portal = Portal.BAYUT
    default_name = "Bayut Lead"
    has_agent_data = True
    has_listing_price = True

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
        channel = clean_text(pick(body, "channel", "source", "lead_type"))
        phone = normalize_phone(pick(body, "enquirer.phone_number", "enquirer.phone", "enquirer.mobile"))

        return {
            "contact_name": clean_text(pick(body, "enquirer.name")),
            "contact_email": clean_email(pick(body, "enquirer.email")),
            "contact_phone": phone,
            "channel": channel,
            "listing_reference": clean_text(pick(body, "listing.reference", "listing.reference_number")),
            "listing_title": clean_text(pick(body, "listing.title")),
            "listing_price": to_number(pick(body, "listing.price")),
            "currency": clean_text(pick(body, "listing.currency", "currency")),
            "response_url": clean_text(pick(body, "enquirer.contact_link", "response_link")),
            "enquiry_date": clean_text(pick(body, "received_at", "created_at", "date")),
            "whatsapp_number": phone if channel and channel.lower() == "whatsapp" else None,
            "product": clean_text(pick(body, "listing.product", "listing.package")),
            "agent_name": clean_text(pick(body, "agent.name")),
            "agent_phone": normalize_phone(pick(body, "agent.phone", "agent.mobile", "agent.phone_number")),
            "agent_email": clean_email(pick(body, "agent.email")),
            "agent_portal_id": clean_text(pick(body, "agent.id", "agent.agent_id")),
            "attributes": {
                "bedrooms": clean_text(pick(body, "listing.bedrooms", "listing.beds")),
                "size": to_number(pick(body, "listing.size", "listing.area")),
                "furnishing": clean_text(pick(body, "listing.furnishing", "listing.furnishing_status")),
                "category": clean_text(pick(body, "listing.category", "listing.purpose")),
                "property_type": clean_text(pick(body, "listing.type", "listing.property_type")),
                "verification_status": clean_text(pick(body, "listing.verification_status")),
                "quality_score": to_number(pick(body, "listing.quality_score")),
            },
        }
