

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

import httpx

from lead_relay.api.schemas.lead import Portal
from lead_relay.clients.audit import AuditLogger
from lead_relay.clients.crm import CrmClient
from lead_relay.clients.token_cache import TokenCache
from lead_relay.clients.upstream import UpstreamClient
from lead_relay.config import Settings, get_settings
from lead_relay.services.deal_fields import build_field_map
from lead_relay.services.pipeline import LeadPipeline
from lead_relay.services.portals.bayut import BayutAdapter
from lead_relay.services.portals.dubizzle import DubizzleAdapter
from lead_relay.services.portals.property_finder import PropertyFinderAdapter

logger = logging.getLogger(__name__)


@dataclass
class Relay:
    """Shared clients plus one pipeline per portal."""

    http: httpx.AsyncClient
    audit: AuditLogger
    token_cache: TokenCache
    upstream: UpstreamClient
    crm: CrmClient
    pipelines: Dict[Portal, LeadPipeline] = field(default_factory=dict)

    def pipeline(self, portal: Portal) -> LeadPipeline:
        return self.pipelines[portal]

    async def aclose(self) -> None:
        """Flush pending audit records and close the HTTP client."""
        await self.audit.drain()
        await self.http.aclose()


def build_relay(
    settings: Settings,
    http: Optional[httpx.AsyncClient] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Relay:
    """Wire clients and pipelines from settings."""
    http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    audit = AuditLogger(settings.audit_log_url, http)
    token_cache = TokenCache(
        settings.pf_api_base_url,
        settings.pf_api_key,
        settings.pf_api_secret,
        http,
        refresh_skew=settings.token_refresh_skew_seconds,
        default_ttl=settings.token_default_ttl_seconds,
    )
    upstream = UpstreamClient(settings.pf_api_base_url, token_cache, http, audit)
    crm = CrmClient(settings.pipedrive_base_url, settings.pipedrive_api_token, http, audit)
    field_map = build_field_map(settings.deal_field_keys)

    adapters = [
        PropertyFinderAdapter(settings.default_currency, api_key_secret=settings.webhook_secret),
        BayutAdapter(settings.default_currency),
        DubizzleAdapter(settings.default_currency, secret=settings.dubizzle_secret),
    ]
    pipelines = {
        adapter.portal: LeadPipeline(
            adapter,
            crm,
            field_map,
            upstream=upstream,
            pipeline_id=settings.pipedrive_pipeline_id,
            max_attempts=settings.enrichment_max_attempts,
            backoff_seconds=settings.enrichment_backoff_seconds,
            sleep=sleep,
        )
        for adapter in adapters
    }

    return Relay(
        http=http,
        audit=audit,
        token_cache=token_cache,
        upstream=upstream,
        crm=crm,
        pipelines=pipelines,
    )


_relay_instance: Optional[Relay] = None


def get_relay() -> Relay:
    """Get or create the relay singleton."""
    global _relay_instance
    if _relay_instance is None:
        _relay_instance = build_relay(get_settings())
        logger.info("Relay initialized")
    return _relay_instance


async def close_relay() -> None:
    """Release the relay singleton, if it was created."""
    global _relay_instance
    if _relay_instance is not None:
        await _relay_instance.aclose()
        _relay_instance = None
