

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from lead_relay.api.schemas.lead import Portal
from lead_relay.api.schemas.webhook import WebhookResponse
from lead_relay.services.relay import Relay, get_relay

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhook", tags=["Webhooks"])


async def _handle(portal: Portal, request: Request, relay: Relay) -> JSONResponse:
    raw_body = await request.body()
    result = await relay.pipeline(portal).process(raw_body, request.headers)
    logger.info(f"{portal.value} webhook answered {result.status_code}: {result.content()}")
    return JSONResponse(status_code=result.status_code, content=result.content())


@router.post("", response_model=WebhookResponse)
async def property_finder_webhook(request: Request, relay: Relay = Depends(get_relay)):
    """
    Property Finder Atlas lead events.

    Body: ``{type, entity?: {id}, payload?}``. When a shared secret is
    configured the ``x-api-key`` header must match it. Only
    ``lead.created`` events write to the CRM; others are acknowledged
    with ``ignored: true``.
    """
    return await _handle(Portal.PROPERTY_FINDER, request, relay)


@router.post("/bayut", response_model=WebhookResponse)
async def bayut_webhook(request: Request, relay: Relay = Depends(get_relay)):
    """Bayut lead events with inline enquirer, agent and listing."""
    return await _handle(Portal.BAYUT, request, relay)


@router.post("/dubizzle", response_model=WebhookResponse)
async def dubizzle_webhook(request: Request, relay: Relay = Depends(get_relay)):
    """
    Dubizzle lead events.

    The ``X-dubizzle-Signature`` header must equal MD5(secret + raw body),
    otherwise the request is answered 401 without touching the CRM.
    """
    return await _handle(Portal.DUBIZZLE, request, relay)
