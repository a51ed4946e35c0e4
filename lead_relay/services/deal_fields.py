

import json
from datetime import datetime
from enum import Enum
from html import escape
from typing import Any, Dict, Mapping, Optional

from lead_relay.api.schemas.lead import LeadEvent, NormalizedLead
from lead_relay.services.normalize import build_deal_title


class DealField(str, Enum):
    """Custom field slots written on every deal."""

    SOURCE = "source"
    LISTING_REFERENCE = "listing_reference"
    LISTING_PRICE = "listing_price"
    RESPONSE_URL = "response_url"
    ENQUIRY_DATE = "enquiry_date"
    WHATSAPP_NUMBER = "whatsapp_number"
    AGENT_NAME = "agent_name"
    AGENT_PHONE = "agent_phone"
    AGENT_EMAIL = "agent_email"
    AGENT_PORTAL_ID = "agent_portal_id"
    BEDROOMS = "bedrooms"
    CATEGORY = "category"
    FURNISHING = "furnishing"
    PRODUCT = "product"
    QUALITY_SCORE = "quality_score"
    SIZE = "size"
    TITLE = "title"
    PROPERTY_TYPE = "property_type"
    VERIFICATION_STATUS = "verification_status"
    EVENT_ID = "event_id"


FieldMap = Dict[DealField, str]


def build_field_map(keys: Mapping[str, str]) -> FieldMap:
    """
    Resolve configured slot names to Pipedrive field keys.

    Unknown slot names are rejected so a typo in configuration fails at
    startup instead of silently dropping data. Slots with an empty key
    are left out of the map.
    """
    field_map: FieldMap = {}
    for name, key in keys.items():
        try:
            slot = DealField(name)
        except ValueError:
            raise ValueError(f"Unknown deal field slot in configuration: {name}") from None
        if key:
            field_map[slot] = key
    return field_map


def _as_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def custom_field_values(lead: NormalizedLead, event_id: Optional[str] = None) -> Dict[DealField, Any]:
    """Every slot's value for a lead; absent values stay None so stale data is cleared."""
    attributes = lead.attributes
    return {
        DealField.SOURCE: lead.channel,
        DealField.LISTING_REFERENCE: lead.listing_reference,
        DealField.LISTING_PRICE: lead.listing_price,
        DealField.RESPONSE_URL: lead.response_url,
        DealField.ENQUIRY_DATE: _as_date(lead.enquiry_date),
        DealField.WHATSAPP_NUMBER: lead.whatsapp_number,
        DealField.AGENT_NAME: lead.agent_name,
        DealField.AGENT_PHONE: lead.agent_phone,
        DealField.AGENT_EMAIL: lead.agent_email,
        DealField.AGENT_PORTAL_ID: lead.agent_portal_id,
        DealField.BEDROOMS: attributes.bedrooms,
        DealField.CATEGORY: attributes.category,
        DealField.FURNISHING: attributes.furnishing,
        DealField.PRODUCT: lead.product,
        DealField.QUALITY_SCORE: attributes.quality_score,
        DealField.SIZE: attributes.size,
        DealField.TITLE: lead.listing_title,
        DealField.PROPERTY_TYPE: attributes.property_type,
        DealField.VERIFICATION_STATUS: attributes.verification_status,
        DealField.EVENT_ID: event_id,
    }


def build_person_payload(lead: NormalizedLead, update: bool = False) -> Dict[str, Any]:
    """
    Pipedrive person body; email and phone only when known.

    On update a placeholder name is left out so it never replaces the
    name already stored on the matched person.
    """
    payload: Dict[str, Any] = {}
    if not (update and lead.name_is_default):
        payload["name"] = lead.contact_name
    if lead.contact_email:
        payload["email"] = [{"value": lead.contact_email, "primary": True, "label": "work"}]
    if lead.contact_phone:
        payload["phone"] = [{"value": lead.contact_phone, "primary": True, "label": "mobile"}]
    return payload


def build_deal_payload(
    lead: NormalizedLead,
    person_id: int,
    field_map: FieldMap,
    pipeline_id: Optional[int] = None,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Pipedrive deal body with every mapped custom field set, nulls included."""
    payload: Dict[str, Any] = {
        "title": build_deal_title(
            lead.contact_name, lead.listing_title, lead.listing_reference, lead.channel
        ),
        "person_id": person_id,
        "value": lead.listing_price,
        "currency": lead.currency,
    }
    if pipeline_id is not None:
        payload["pipeline_id"] = pipeline_id

    for slot, value in custom_field_values(lead, event_id).items():
        key = field_map.get(slot)
        if key:
            payload[key] = value
    return payload


def build_note_content(lead: NormalizedLead, event: LeadEvent) -> str:
    """Readable summary followed by the raw event JSON."""
    lines = [
        ("Portal", event.portal.value),
        ("Name", lead.contact_name),
        ("Email", lead.contact_email),
        ("Phone", lead.contact_phone),
        ("Channel", lead.channel),
        ("Listing", lead.listing_title),
        ("Reference", lead.listing_reference),
        ("Price", f"{lead.listing_price:g} {lead.currency}"),
        ("Response link", lead.response_url),
        ("Enquired at", lead.enquiry_date),
        ("Agent", lead.agent_name),
    ]
    summary = "<br>".join(
        f"<b>{label}:</b> {escape(str(value))}" for label, value in lines if value
    )
    raw = escape(json.dumps(event.raw, indent=2, ensure_ascii=False, default=str))
    return f"{summary}<br><br><b>Raw event</b><pre>{raw}</pre>"
