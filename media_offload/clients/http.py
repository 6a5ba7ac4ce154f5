"""
Shared aiohttp plumbing for the service clients.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from ..exceptions import (
    AuthenticationError,
    PermanentTransportError,
    TransientTransportError,
    TransportError,
)

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

USER_AGENT = "media-offload/0.1"


def classify_status(service: str, status: int, reason: str) -> TransportError:
    """Map an unexpected HTTP status to the matching transport error."""
    if status in (401, 403):
        return AuthenticationError(service, reason or "credentials rejected", status_code=status)
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        return TransientTransportError(service, reason, status_code=status)
    return PermanentTransportError(service, reason, status_code=status)


async def error_reason(response: aiohttp.ClientResponse) -> str:
    """Best-effort error text from a failed response."""
    try:
        body = await response.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        body = ""
    data: Any = None
    if body.lstrip().startswith("{"):
        try:
            data = json.loads(body)
        except ValueError:
            data = None
    if isinstance(data, dict):
        message = data.get("error") or data.get("message") or data.get("Message")
        if message:
            return str(message)
    return body.strip()[:200] or response.reason or f"HTTP {response.status}"


class HttpClientMixin:
    """Lazily created, shared aiohttp session with a per-client timeout."""

    service_name = "remote service"
    _timeout_seconds: float = 120.0
    _session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _wrap_client_error(self, exc: BaseException, operation: str) -> TransientTransportError:
        if isinstance(exc, asyncio.TimeoutError):
            reason = f"{operation} timed out after {self._timeout_seconds}s"
        else:
            reason = f"{operation} failed: {exc}"
        logger.warning(f"{self.service_name}: {reason}")
        return TransientTransportError(self.service_name, reason, cause=exc if isinstance(exc, Exception) else None)
