

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from lead_relay.errors import UpstreamAuthError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    """Bearer token for the portal read API."""

    value: str
    expires_at: float

    def is_fresh(self, now: float, skew: float) -> bool:
        """Usable only while now < expires_at - skew."""
        return now < self.expires_at - skew


class TokenCache:
    """
    Holds one portal access token and refreshes it lazily.

    A cached token is reused until ``refresh_skew`` seconds before it
    expires, then exchanged again for a new one with the API key and
    secret. Refreshes are single-flight within the process.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        http: httpx.AsyncClient,
        refresh_skew: float = 60,
        default_ttl: float = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret
        self.http = http
        self.refresh_skew = refresh_skew
        self.default_ttl = default_ttl
        self.clock = clock
        self._token: Optional[Token] = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> Token:
        """Return a fresh token, exchanging credentials when needed."""
        token = self._token
        if token and token.is_fresh(self.clock(), self.refresh_skew):
            return token

        async with self._lock:
            token = self._token
            if token and token.is_fresh(self.clock(), self.refresh_skew):
                return token
            self._token = await self._exchange()
            return self._token

    async def _exchange(self) -> Token:
        fetched_at = self.clock()
        try:
            response = await self.http.post(
                f"{self.base_url}/auth/token",
                json={"apiKey": self.api_key, "apiSecret": self.api_secret},
            )
        except httpx.HTTPError as e:
            raise UpstreamAuthError(f"Token request failed: {e}") from e

        if not response.is_success:
            raise UpstreamAuthError(
                f"Token request rejected with status {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamAuthError(f"Token response is not JSON: {response.text[:200]}") from e

        value = data.get("accessToken") if isinstance(data, dict) else None
        if not value:
            raise UpstreamAuthError("Token response did not contain accessToken")

        ttl = data.get("expiresIn") or self.default_ttl
        logger.info(f"Obtained portal access token valid for {ttl}s")
        return Token(value=value, expires_at=fetched_at + float(ttl))
