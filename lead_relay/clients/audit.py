

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

import httpx

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Best-effort sink for structured trace events.

    Every record is POSTed as {time, message, data} to an external
    endpoint on a background task. Delivery failures are logged and
    dropped, they never reach the caller.
    """

    def __init__(self, url: Optional[str], http: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.http = http
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def emit(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Schedule delivery of one audit record without waiting for it."""
        if not self.enabled:
            return

        record = {
            "time": datetime.now(timezone.utc).isoformat(),
            "message": message,
            "data": data or {},
        }
        task = asyncio.get_running_loop().create_task(self._deliver(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, record: Dict[str, Any]) -> None:
        try:
            if self.http is not None:
                response = await self.http.post(self.url, json=record)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(self.url, json=record)
            response.raise_for_status()
        except Exception as e:
            logger.warning(f"Audit delivery failed for '{record['message']}': {e}")

    async def drain(self) -> None:
        """Wait for every scheduled delivery to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _summarize(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {k: _summarize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_summarize(v) for v in value]
    return repr(value)


def audited(operation: str) -> Callable:
    """
    Emit one audit record per call of an async client method.

    The wrapped method's owner must expose an ``audit`` attribute holding
    an AuditLogger. Outcome and error are recorded; the original result or
    exception is passed through untouched.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            data: Dict[str, Any] = {"args": _summarize(list(args))}
            if kwargs:
                data["kwargs"] = _summarize(kwargs)
            try:
                result = await func(self, *args, **kwargs)
            except Exception as e:
                self.audit.emit(f"{operation} failed", {**data, "error": str(e)})
                raise
            self.audit.emit(operation, {**data, "result": _summarize(result)})
            return result
        return wrapper
    return decorator
