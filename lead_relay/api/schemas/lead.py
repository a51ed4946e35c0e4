

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Portal(str, Enum):
    """Listing portals that push lead events to the relay."""

    PROPERTY_FINDER = "property_finder"
    BAYUT = "bayut"
    DUBIZZLE = "dubizzle"


class LeadEvent(BaseModel):
    """Raw inbound lead notification, parsed just enough to route it."""

    portal: Portal = Field(..., description="Portal that sent the event")
    kind: str = Field(..., description="Event kind, e.g. lead.created")
    event_id: Optional[str] = Field(None, description="External event id used as idempotency key")
    lead_id: Optional[str] = Field(None, description="Upstream lead id when only a reference is pushed")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Embedded lead payload")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Full request body, kept for the audit note")

    @property
    def is_creation(self) -> bool:
        """Whether this event announces a new lead."""
        return self.kind.lower().rsplit(".", 1)[-1] in ("created", "create", "new")


class ListingAttributes(BaseModel):
    """Optional listing attributes copied onto the deal."""

    bedrooms: Optional[str] = None
    size: Optional[float] = None
    furnishing: Optional[str] = None
    category: Optional[str] = None
    property_type: Optional[str] = None
    verification_status: Optional[str] = None
    quality_score: Optional[float] = None


class NormalizedLead(BaseModel):
    """Portal-independent lead the upsert pipeline works on."""

    contact_name: str = Field(..., min_length=1, description="Display name, never empty")
    name_is_default: bool = Field(False, description="contact_name is the portal placeholder, not a sent name")
    contact_email: Optional[str] = Field(None, description="Trimmed email address")
    contact_phone: Optional[str] = Field(None, description="Digits with optional leading +")
    channel: Optional[str] = Field(None, description="Contact channel: call, whatsapp, email, ...")
    listing_reference: Optional[str] = None
    listing_title: Optional[str] = None
    listing_price: float = Field(0, description="Listing price, 0 when unknown")
    currency: str = Field(..., description="ISO currency code")
    response_url: Optional[str] = None
    enquiry_date: Optional[str] = Field(None, description="Enquiry timestamp as sent by the portal")
    whatsapp_number: Optional[str] = None
    product: Optional[str] = Field(None, description="Portal listing product, e.g. featured")

    agent_name: Optional[str] = None
    agent_phone: Optional[str] = None
    agent_email: Optional[str] = None
    agent_portal_id: Optional[str] = None

    attributes: ListingAttributes = Field(default_factory=ListingAttributes)
