

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, TypedDict

from langgraph.graph import StateGraph, END
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_incrementing,
)

from lead_relay.api.schemas.lead import LeadEvent, NormalizedLead
from lead_relay.api.schemas.webhook import PipelineResult, WebhookResponse
from lead_relay.clients.crm import CrmClient
from lead_relay.clients.upstream import UpstreamClient
from lead_relay.errors import (
    AuthenticityError,
    ContactError,
    CrmCommandError,
    CrmHttpError,
    DealError,
    NoteError,
    RelayError,
    UpstreamHttpError,
)
from lead_relay.services.deal_fields import (
    DealField,
    FieldMap,
    build_deal_payload,
    build_note_content,
    build_person_payload,
)
from lead_relay.services.portals.base import PortalAdapter

logger = logging.getLogger(__name__)


class LeadPipelineState(TypedDict):
    """State carried through one webhook run."""

    raw_body: bytes
    headers: Dict[str, str]

    event: Optional[LeadEvent]
    enrichment: Dict[str, Any]
    lead: Optional[NormalizedLead]

    person_id: Optional[int]
    deal_id: Optional[int]

    # verified -> parsed -> unique -> enriched -> normalized -> contact -> deal -> success,
    # or one of the terminal short-circuits: rejected, ignored, deduped
    outcome: str
    error: Optional[str]


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: Optional[str]) -> AsyncIterator[None]:
        if key is None:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                self._locks.pop(key, None)


def _is_empty(result: Any) -> bool:
    return not result


def _give_up(retry_state: RetryCallState) -> None:
    return None


class LeadPipeline:
    """
    LangGraph-based upsert pipeline for one portal.

    Workflow:
    1. Verify Authenticity - shared secret or signature check (401 on failure)
    2. Parse Event - non-creation events end as ignored
    3. Check Idempotency - an existing deal for the event id ends as deduped
    4. Enrich - read the lead back with bounded retry, then user and listing
    5. Normalize - portal payload to NormalizedLead
    6. Upsert Contact - match by email, then phone; update or create
    7. Create Deal - always a new deal
    8. Attach Note - best effort
    """

    def __init__(
        self,
        adapter: PortalAdapter,
        crm: CrmClient,
        field_map: FieldMap,
        upstream: Optional[UpstreamClient] = None,
        pipeline_id: Optional[int] = None,
        max_attempts: int = 5,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.crm = crm
        self.field_map = field_map
        self.upstream = upstream
        self.pipeline_id = pipeline_id
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep
        self._locks = KeyedLock()
        self.graph = self._build_graph()

    @property
    def name(self) -> str:
        return self.adapter.portal.value

    def _build_graph(self):
        """Build the LangGraph workflow."""
        workflow = StateGraph(LeadPipelineState)

        workflow.add_node("verify_authenticity", self._verify_authenticity)
        workflow.add_node("parse_event", self._parse_event)
        workflow.add_node("check_idempotency", self._check_idempotency)
        workflow.add_node("enrich", self._enrich)
        workflow.add_node("normalize", self._normalize)
        workflow.add_node("upsert_contact", self._upsert_contact)
        workflow.add_node("create_deal", self._create_deal)
        workflow.add_node("attach_note", self._attach_note)

        workflow.set_entry_point("verify_authenticity")
        workflow.add_conditional_edges(
            "verify_authenticity",
            self._continue_unless("rejected"),
            {"continue": "parse_event", "stop": END},
        )
        workflow.add_conditional_edges(
            "parse_event",
            self._continue_unless("ignored"),
            {"continue": "check_idempotency", "stop": END},
        )
        workflow.add_conditional_edges(
            "check_idempotency",
            self._continue_unless("deduped"),
            {"continue": "enrich", "stop": END},
        )
        workflow.add_edge("enrich", "normalize")
        workflow.add_edge("normalize", "upsert_contact")
        workflow.add_edge("upsert_contact", "create_deal")
        workflow.add_edge("create_deal", "attach_note")
        workflow.add_edge("attach_note", END)

        return workflow.compile()

    @staticmethod
    def _continue_unless(outcome: str) -> Callable[[LeadPipelineState], str]:
        def route(state: LeadPipelineState) -> str:
            return "stop" if state["outcome"] == outcome else "continue"
        return route

    async def _verify_authenticity(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Reject requests that fail the portal's authenticity check."""
        try:
            self.adapter.verify_authenticity(state["raw_body"], state["headers"])
        except AuthenticityError as e:
            logger.warning(f"[{self.name}] Rejected webhook: {e}")
            return {"outcome": "rejected", "error": str(e)}
        return {"outcome": "verified"}

    async def _parse_event(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Decode the body and drop events that do not create a lead."""
        body = json.loads(state["raw_body"] or b"{}")
        if not isinstance(body, dict):
            raise ValueError("Webhook body must be a JSON object")

        event = self.adapter.parse_event(body)
        if not event.is_creation:
            logger.info(f"[{self.name}] Ignoring event of kind '{event.kind}'")
            return {"event": event, "outcome": "ignored"}

        logger.info(f"[{self.name}] Processing lead event id={event.event_id} lead={event.lead_id}")
        return {"event": event, "outcome": "parsed"}

    async def _check_idempotency(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Short-circuit when a deal is already tagged with this event id."""
        event = state["event"]
        if not event.event_id or DealField.EVENT_ID not in self.field_map:
            return {"outcome": "unique"}

        deal = await self._find_deal_for_event(event.event_id)
        if deal is None:
            return {"outcome": "unique"}

        person_id = deal.get("person_id")
        if isinstance(person_id, dict):
            person_id = person_id.get("value")
        logger.info(f"[{self.name}] Event {event.event_id} already handled by deal {deal.get('id')}")
        return {
            "outcome": "deduped",
            "deal_id": deal.get("id"),
            "person_id": person_id,
        }

    async def _find_deal_for_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        """First deal whose event-id field holds exactly this id."""
        # custom_fields search matches any text field, so each hit is re-read
        event_key = self.field_map[DealField.EVENT_ID]
        hits = await self.crm.search("deals", event_id, "custom_fields", exact_match=True)
        for hit in hits:
            if not hit.get("id"):
                continue
            deal = await self.crm.get("deals", hit["id"])
            if deal.get(event_key) == event_id:
                return deal
        return None

    async def _read_lead(self, lead_id: str) -> Optional[Dict[str, Any]]:
        """Read a lead back, retrying while the portal has not indexed it yet."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_result(_is_empty) | retry_if_exception_type(UpstreamHttpError),
            retry_error_callback=_give_up,
            sleep=self.sleep,
        )
        return await retrying(self.upstream.get_lead, lead_id)

    async def _enrich(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Complete the lead from the portal API where the event lacks it."""
        event = state["event"]
        lead_data = event.payload

        if self.upstream is not None and self.adapter.needs_lead_fetch(event):
            fetched = await self._read_lead(event.lead_id)
            if fetched:
                lead_data = fetched
            else:
                logger.warning(
                    f"[{self.name}] Lead {event.lead_id} still unavailable after "
                    f"{self.max_attempts} attempts, using embedded payload"
                )

        enrichment = await self.adapter.enrich(lead_data, self.upstream)
        return {"enrichment": enrichment, "outcome": "enriched"}

    async def _normalize(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Map the enriched payload to the normalized lead."""
        lead = self.adapter.normalize(state["event"], state["enrichment"])
        return {"lead": lead, "outcome": "normalized"}

    async def _find_person(self, lead: NormalizedLead) -> Optional[Dict[str, Any]]:
        for field, term in (("email", lead.contact_email), ("phone", lead.contact_phone)):
            if not term:
                continue
            matches = await self.crm.search("persons", term, field, exact_match=True)
            if matches:
                return matches[0]
        return None

    async def _upsert_contact(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Update the person matched by email or phone, or create one."""
        lead = state["lead"]
        existing = await self._find_person(lead)

        try:
            if existing:
                person_id = existing.get("id")
                await self.crm.update("persons", person_id, build_person_payload(lead, update=True))
                logger.info(f"[{self.name}] Updated person {person_id}")
            else:
                record = await self.crm.create("persons", build_person_payload(lead))
                person_id = record.get("id")
                logger.info(f"[{self.name}] Created person {person_id}")
        except (CrmHttpError, CrmCommandError) as e:
            raise ContactError(f"Failed to upsert person: {e}") from e

        if not person_id:
            raise ContactError("Failed to create person")
        return {"person_id": person_id, "outcome": "contact"}

    async def _create_deal(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Create the deal linked to the person."""
        person_id = state["person_id"]
        payload = build_deal_payload(
            state["lead"],
            person_id,
            self.field_map,
            pipeline_id=self.pipeline_id,
            event_id=state["event"].event_id,
        )

        try:
            record = await self.crm.create("deals", payload)
        except (CrmHttpError, CrmCommandError) as e:
            logger.error(f"[{self.name}] Deal creation failed, person {person_id} left without deal")
            raise DealError(f"Failed to create deal: {e}") from e

        deal_id = record.get("id")
        if not deal_id:
            raise DealError("Failed to create deal")
        logger.info(f"[{self.name}] Created deal {deal_id} for person {person_id}")
        return {"deal_id": deal_id, "outcome": "deal"}

    async def _post_note(self, state: LeadPipelineState) -> None:
        body = {
            "content": build_note_content(state["lead"], state["event"]),
            "deal_id": state["deal_id"],
            "person_id": state["person_id"],
        }
        try:
            await self.crm.create("notes", body)
        except (CrmHttpError, CrmCommandError) as e:
            raise NoteError(f"Failed to attach note to deal {state['deal_id']}: {e}") from e

    async def _attach_note(self, state: LeadPipelineState) -> Dict[str, Any]:
        """Attach the audit note; failures are logged only."""
        try:
            await self._post_note(state)
        except NoteError as e:
            logger.warning(f"[{self.name}] {e}")
        return {"outcome": "success"}

    def _peek_event_id(self, raw_body: bytes) -> Optional[str]:
        try:
            body = json.loads(raw_body or b"{}")
            return self.adapter.parse_event(body).event_id if isinstance(body, dict) else None
        except ValueError:
            return None

    async def process(self, raw_body: bytes, headers: Mapping[str, str]) -> PipelineResult:
        """
        Run the complete webhook workflow.

        Args:
            raw_body: Exact request bytes, needed for signature checks
            headers: Request headers

        Returns:
            PipelineResult with HTTP status and response body
        """
        initial_state: LeadPipelineState = {
            "raw_body": raw_body,
            "headers": {k.lower(): v for k, v in headers.items()},
            "event": None,
            "enrichment": {},
            "lead": None,
            "person_id": None,
            "deal_id": None,
            "outcome": "received",
            "error": None,
        }

        try:
            async with self._locks.hold(self._peek_event_id(raw_body)):
                final_state = await self.graph.ainvoke(initial_state)
        except Exception as e:
            logger.exception(f"[{self.name}] Webhook processing failed: {e}")
            status_code = e.status_code if isinstance(e, RelayError) else 500
            return PipelineResult(
                status_code=status_code,
                body=WebhookResponse(success=False, error=str(e)),
            )

        return self._respond(final_state)

    def _respond(self, state: LeadPipelineState) -> PipelineResult:
        outcome = state["outcome"]
        if outcome == "rejected":
            return PipelineResult(
                status_code=401,
                body=WebhookResponse(success=False, error=state["error"]),
            )
        if outcome == "ignored":
            return PipelineResult(body=WebhookResponse(success=True, ignored=True))
        if outcome == "deduped":
            return PipelineResult(
                body=WebhookResponse(
                    success=True,
                    deduped=True,
                    pipedrive_person_id=state["person_id"],
                    pipedrive_deal_id=state["deal_id"],
                )
            )
        return PipelineResult(
            body=WebhookResponse(
                success=True,
                pipedrive_person_id=state["person_id"],
                pipedrive_deal_id=state["deal_id"],
            )
        )
