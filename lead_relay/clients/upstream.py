

from typing import Any, Dict, Optional

import httpx

from lead_relay.clients.audit import AuditLogger, audited
from lead_relay.clients.token_cache import TokenCache
from lead_relay.errors import UpstreamHttpError


class UpstreamClient:
    """
    Authenticated reader for the Property Finder Atlas API.

    Every request carries a bearer token from the TokenCache. Non-2xx
    answers raise UpstreamHttpError; retrying is left to the caller since
    freshly created leads may not be readable yet.
    """

    def __init__(
        self,
        base_url: str,
        token_cache: TokenCache,
        http: httpx.AsyncClient,
        audit: AuditLogger,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_cache = token_cache
        self.http = http
        self.audit = audit

    @audited("upstream.get")
    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a path on the read API and return the decoded JSON body."""
        token = await self.token_cache.get_token()
        try:
            response = await self.http.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {token.value}"},
            )
        except httpx.HTTPError as e:
            raise UpstreamHttpError(0, str(e)) from e

        if not response.is_success:
            raise UpstreamHttpError(response.status_code, _body(response))

        return _body(response)

    async def get_lead(self, lead_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one lead by id; None while the portal has not indexed it."""
        return _first(await self.get("/leads", {"id": lead_id}))

    async def get_user(self, public_profile_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the agent owning a public profile."""
        return _first(await self.get("/users", {"publicProfileId": public_profile_id}))

    async def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one listing by id."""
        return _first(await self.get("/listings", {"filter[ids]": listing_id}))


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _first(body: Any) -> Optional[Dict[str, Any]]:
    """Unwrap the first record of a list response."""
    if isinstance(body, dict):
        items: Any = body.get("data", body.get("results"))
    else:
        items = body
    if isinstance(items, list):
        items = [item for item in items if isinstance(item, dict)]
        return items[0] if items else None
    if isinstance(items, dict) and items:
        return items
    return None
