

import json
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lead_relay.config import DEFAULT_DEAL_FIELD_KEYS, Settings
from lead_relay.services.relay import build_relay


CRM_HOST = "api.pipedrive.com"
PF_HOST = "atlas.propertyfinder.com"
EVENT_ID_KEY = DEFAULT_DEAL_FIELD_KEYS["event_id"]


class FakeApis:
    """In-memory Pipedrive and Property Finder APIs behind httpx.MockTransport."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.persons: List[Dict[str, Any]] = []
        self.deals: List[Dict[str, Any]] = []
        self.notes: List[Dict[str, Any]] = []
        self.lead_responses: List[Any] = []
        self.users: Dict[str, Dict[str, Any]] = {}
        self.listings: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self.token_response: Tuple[int, Any] = (200, {"accessToken": "atlas-token", "expiresIn": 3600})
        self._next_id = 100

    def add_deal(self, person_id: int, payload: Dict[str, Any]) -> int:
        deal_id = self._id()
        self.deals.append({
            "id": deal_id,
            "person_id": person_id,
            "event_id": payload.get(EVENT_ID_KEY),
            "payload": {**payload, "person_id": person_id},
        })
        return deal_id

    def fail(self, method: str, path: str, status: int, body: Any) -> None:
        self.failures[(method, path)] = (status, body)

    @property
    def crm_writes(self) -> List[Tuple[str, str]]:
        return [
            (r.method, r.url.path)
            for r in self.requests
            if r.url.host == CRM_HOST and r.method in ("POST", "PUT", "DELETE")
        ]

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key in self.failures:
            status, body = self.failures[key]
            return httpx.Response(status, json=body)
        if request.url.host == PF_HOST:
            return self._portal(request)
        if request.url.host == CRM_HOST:
            return self._crm(request)
        return httpx.Response(404, json={"error": "unknown host"})

    def _portal(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params
        if path == "/v1/auth/token":
            status, body = self.token_response
            return httpx.Response(status, json=body)
        if path == "/v1/leads":
            body = self.lead_responses.pop(0) if self.lead_responses else {"data": []}
            return httpx.Response(200, json=body)
        if path == "/v1/users":
            user = self.users.get(params.get("publicProfileId"))
            return httpx.Response(200, json={"data": [user] if user else []})
        if path == "/v1/listings":
            listing = self.listings.get(params.get("filter[ids]"))
            return httpx.Response(200, json={"data": [listing] if listing else []})
        return httpx.Response(404, json={"message": "not found"})

    def _crm(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params
        body = json.loads(request.content) if request.content else {}

        if path == "/v1/persons/search":
            field, term = params.get("fields"), params.get("term")
            items = [{"result_score": 1, "item": {"id": p["id"], "name": p["name"]}}
                     for p in self.persons if p.get(field) == term]
            return _ok({"items": items})
        if path == "/v1/deals/search":
            # custom_fields search hits any custom field holding the term
            term = params.get("term")
            items = [{"result_score": 1, "item": {"id": d["id"], "person": {"id": d["person_id"]}}}
                     for d in self.deals if term in d["payload"].values()]
            return _ok({"items": items})
        if path.startswith("/v1/deals/") and request.method == "GET":
            deal_id = int(path.rsplit("/", 1)[-1])
            deal = next((d for d in self.deals if d["id"] == deal_id), None)
            if deal is None:
                return httpx.Response(404, json={"success": False, "error": "Deal not found"})
            return _ok({**deal["payload"], "id": deal["id"], "person_id": {"value": deal["person_id"]}})
        if path == "/v1/persons" and request.method == "POST":
            person = {
                "id": self._id(),
                "name": body.get("name"),
                "email": (body.get("email") or [{}])[0].get("value"),
                "phone": (body.get("phone") or [{}])[0].get("value"),
            }
            self.persons.append(person)
            return _ok(person)
        if path.startswith("/v1/persons/") and request.method == "PUT":
            person_id = int(path.rsplit("/", 1)[-1])
            person = next(p for p in self.persons if p["id"] == person_id)
            person["name"] = body.get("name", person["name"])
            if body.get("email"):
                person["email"] = body["email"][0]["value"]
            if body.get("phone"):
                person["phone"] = body["phone"][0]["value"]
            return _ok(person)
        if path == "/v1/deals" and request.method == "POST":
            deal = {
                "id": self._id(),
                "person_id": body.get("person_id"),
                "event_id": body.get(EVENT_ID_KEY),
                "payload": body,
            }
            self.deals.append(deal)
            return _ok({"id": deal["id"], "title": body.get("title")})
        if path == "/v1/notes" and request.method == "POST":
            note = {"id": self._id(), **body}
            self.notes.append(note)
            return _ok(note)
        return httpx.Response(404, json={"success": False, "error": "not found"})


def _ok(data: Any) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": data})


class RecordingAudit:
    """Stands in for AuditLogger and keeps emitted records."""

    def __init__(self):
        self.records: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.records.append((message, data or {}))


@pytest.fixture
def fake_apis() -> FakeApis:
    return FakeApis()


@pytest.fixture
def http_client(fake_apis) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_apis.handler))


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def settings() -> Settings:
    return Settings(
        pipedrive_api_token="pd-token",
        pipedrive_pipeline_id=7,
        default_currency="AED",
        pf_api_key="pf-key",
        pf_api_secret="pf-secret",
        webhook_secret=None,
        dubizzle_secret="s",
        audit_log_url=None,
    )


@pytest.fixture
def relay(settings, http_client, sleeps):
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return build_relay(settings, http=http_client, sleep=fake_sleep)


@pytest.fixture
def atlas_lead():
    """Lead as returned by the Atlas read API."""
    return {
        "id": "lead-1",
        "channel": "whatsapp",
        "createdAt": "2026-10-01T09:30:00Z",
        "responseLink": "https://www.propertyfinder.ae/leads/lead-1",
        "sender": {
            "name": "Jane Doe",
            "contacts": [
                {"type": "email", "value": " jane@example.com "},
                {"type": "phone", "value": "+971 (50) 123-4567"},
            ],
        },
        "listing": {"id": "listing-9", "reference": "REF123"},
        "publicProfile": {"id": "profile-3"},
    }


@pytest.fixture
def atlas_listing():
    return {
        "id": "listing-9",
        "reference": "REF123",
        "title": {"en": "Sea View 2BR"},
        "price": {"type": "sale", "amounts": {"sale": 2500000}, "currency": "AED"},
        "bedrooms": "2",
        "size": 1250,
        "furnishingType": "furnished",
        "category": "residential",
        "type": "apartment",
        "verificationStatus": "verified",
        "qualityScore": {"value": 87},
        "products": [{"type": "featured"}],
    }


@pytest.fixture
def atlas_user():
    return {
        "id": "user-5",
        "publicProfile": {
            "id": "profile-3",
            "name": "Omar Agent",
            "phone": "+971 4 555 0000",
            "email": "omar@agency.ae",
        },
    }


@pytest.fixture
def bayut_body():
    return {
        "id": "bayut-evt-1",
        "channel": "call",
        "received_at": "2026-10-02T12:00:00+04:00",
        "enquirer": {
            "name": "Sam Buyer",
            "phone_number": "00971-55-765-4321",
            "email": "sam@example.com",
            "contact_link": "https://www.bayut.com/leads/77",
        },
        "listing": {
            "reference": "BY-55",
            "title": "Marina Loft",
            "price": "1,800,000",
            "bedrooms": 1,
            "size": "820",
            "furnishing": "unfurnished",
            "category": "residential",
            "type": "apartment",
        },
        "agent": {"id": 42, "name": "Lina Agent", "phone": "+971 50 000 1111", "email": "lina@agency.ae"},
    }


@pytest.fixture
def dubizzle_body():
    return {
        "id": "dbz-evt-1",
        "type": "lead.created",
        "lead_type": "chat",
        "created_at": "2026-10-03T08:15:00Z",
        "enquirer": {"name": "Ali Renter", "phone_number": "+971-52-111-2222", "email": "ali@example.com"},
        "listing": {"reference": "DBZ-1", "title": "JVC Studio", "url": "https://dubai.dubizzle.com/l/1", "price": 55000},
    }
