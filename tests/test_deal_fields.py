

import pytest

from lead_relay.api.schemas.lead import LeadEvent, ListingAttributes, NormalizedLead, Portal
from lead_relay.config import DEFAULT_DEAL_FIELD_KEYS
from lead_relay.services.deal_fields import (
    DealField,
    build_deal_payload,
    build_field_map,
    build_note_content,
    build_person_payload,
)


@pytest.fixture
def field_map():
    return build_field_map(DEFAULT_DEAL_FIELD_KEYS)


@pytest.fixture
def lead():
    return NormalizedLead(
        contact_name="Jane Doe",
        contact_email="jane@example.com",
        contact_phone="+971501234567",
        channel="whatsapp",
        listing_reference="REF123",
        listing_title="Sea View 2BR",
        listing_price=2500000,
        currency="AED",
        enquiry_date="2026-10-01T09:30:00Z",
        attributes=ListingAttributes(bedrooms="2", size=1250),
    )


class TestFieldMap:
    """Tests for the custom field lookup table."""

    def test_every_slot_has_a_default_key(self, field_map):
        assert set(field_map) == set(DealField)

    def test_empty_key_disables_slot(self):
        keys = {**DEFAULT_DEAL_FIELD_KEYS, "event_id": ""}
        assert DealField.EVENT_ID not in build_field_map(keys)

    def test_unknown_slot_rejected(self):
        with pytest.raises(ValueError, match="bogus"):
            build_field_map({"bogus": "abc"})


class TestDealPayload:
    """Tests for the Pipedrive deal body."""

    def test_core_fields(self, lead, field_map):
        payload = build_deal_payload(lead, 11, field_map, pipeline_id=3, event_id="evt-1")

        assert payload["title"] == "Jane Doe | Sea View 2BR | REF123 (whatsapp)"
        assert payload["person_id"] == 11
        assert payload["value"] == 2500000
        assert payload["currency"] == "AED"
        assert payload["pipeline_id"] == 3

    def test_custom_fields_mapped_by_key(self, lead, field_map):
        payload = build_deal_payload(lead, 11, field_map, event_id="evt-1")

        assert payload[field_map[DealField.SOURCE]] == "whatsapp"
        assert payload[field_map[DealField.LISTING_REFERENCE]] == "REF123"
        assert payload[field_map[DealField.BEDROOMS]] == "2"
        assert payload[field_map[DealField.ENQUIRY_DATE]] == "2026-10-01"
        assert payload[field_map[DealField.EVENT_ID]] == "evt-1"

    def test_absent_values_written_as_null(self, lead, field_map):
        """Unknown attributes are sent as null so stale values get cleared."""
        payload = build_deal_payload(lead, 11, field_map)

        for slot in (DealField.AGENT_NAME, DealField.FURNISHING, DealField.QUALITY_SCORE, DealField.EVENT_ID):
            assert field_map[slot] in payload
            assert payload[field_map[slot]] is None

    def test_no_pipeline_id_when_unset(self, lead, field_map):
        assert "pipeline_id" not in build_deal_payload(lead, 11, field_map)

    def test_disabled_slot_omitted(self, lead):
        field_map = build_field_map({"source": "abc", "title": ""})
        payload = build_deal_payload(lead, 11, field_map)
        assert payload["abc"] == "whatsapp"
        assert "" not in payload

    def test_price_defaults_to_zero(self, field_map):
        lead = NormalizedLead(contact_name="X", currency="AED")
        payload = build_deal_payload(lead, 1, field_map)
        assert payload["value"] == 0
        assert payload[field_map[DealField.LISTING_PRICE]] == 0


class TestPersonPayload:
    """Tests for the Pipedrive person body."""

    def test_full(self, lead):
        payload = build_person_payload(lead)
        assert payload["name"] == "Jane Doe"
        assert payload["email"][0]["value"] == "jane@example.com"
        assert payload["phone"][0]["value"] == "+971501234567"

    def test_name_only(self):
        payload = build_person_payload(NormalizedLead(contact_name="Bayut Lead", currency="AED"))
        assert payload == {"name": "Bayut Lead"}

    def test_placeholder_name_left_out_of_update(self):
        lead = NormalizedLead(contact_name="Bayut Lead", name_is_default=True, contact_phone="0501234567", currency="AED")

        assert "name" not in build_person_payload(lead, update=True)
        assert build_person_payload(lead)["name"] == "Bayut Lead"

    def test_real_name_kept_on_update(self, lead):
        assert build_person_payload(lead, update=True)["name"] == "Jane Doe"


class TestNoteContent:
    """Tests for the audit note."""

    def test_contains_summary_and_raw_event(self, lead):
        raw = {"type": "lead.created", "payload": {"name": "<Jane>"}}
        event = LeadEvent(portal=Portal.PROPERTY_FINDER, kind="lead.created", raw=raw)

        content = build_note_content(lead, event)

        assert "<b>Name:</b> Jane Doe" in content
        assert "<b>Portal:</b> property_finder" in content
        assert "&lt;Jane&gt;" in content
        assert "lead.created" in content
