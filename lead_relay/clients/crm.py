

from typing import Any, Dict, List, Optional

import httpx

from lead_relay.clients.audit import AuditLogger, audited
from lead_relay.errors import CrmCommandError, CrmHttpError


class CrmClient:
    """
    Thin wrapper over the Pipedrive REST API.

    The API token travels in the query string. A 2xx answer whose body
    says ``success: false`` is a failed command, not a transport error.
    No call is retried.
    """

    def __init__(self, base_url: str, api_token: str, http: httpx.AsyncClient, audit: AuditLogger):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.http = http
        self.audit = audit

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        query = {**(params or {}), "api_token": self.api_token}
        try:
            response = await self.http.request(method, f"{self.base_url}{path}", params=query, json=json)
        except httpx.HTTPError as e:
            raise CrmHttpError(None, str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if not response.is_success:
            raise CrmHttpError(response.status_code, body)
        if not isinstance(body, dict) or not body.get("success"):
            raise CrmCommandError(body)

        return body.get("data")

    @audited("crm.search")
    async def search(self, resource: str, term: str, field: str, exact_match: bool = True) -> List[Dict[str, Any]]:
        """Search a resource; returns the matched records, best first."""
        data = await self._request(
            "GET",
            f"/{resource}/search",
            params={"term": term, "fields": field, "exact_match": str(exact_match).lower()},
        )
        items = (data or {}).get("items") or []
        return [entry.get("item", entry) for entry in items if isinstance(entry, dict)]

    @audited("crm.get")
    async def get(self, resource: str, record_id: int) -> Dict[str, Any]:
        """Fetch one record with all of its fields."""
        return await self._request("GET", f"/{resource}/{record_id}") or {}

    @audited("crm.create")
    async def create(self, resource: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record and return it."""
        return await self._request("POST", f"/{resource}", json=body) or {}

    @audited("crm.update")
    async def update(self, resource: str, record_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
        """Update a record in place and return it."""
        return await self._request("PUT", f"/{resource}/{record_id}", json=body) or {}
