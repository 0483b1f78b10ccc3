"""
Thin JSON-over-HTTP client shared by the identity service and the remote
session store.

Responses are returned as data regardless of status; transport failures
(connection refused, DNS, timeouts) propagate as ``TRANSPORT_ERRORS`` so
callers can map them onto their own error types.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

USER_AGENT = "dev-timr"


@dataclass
class HttpResponse:
    """Status, parsed body and headers of a completed request."""

    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def get(self, key: str, default: Any = None) -> Any:
        """Read a key from a JSON object body (None for non-object bodies)."""
        return self.data.get(key, default) if isinstance(self.data, dict) else default

    def error_message(self) -> str:
        """Best-effort human message for a failed response."""
        for key in ("error_description", "error", "message", "msg", "details"):
            value = self.get(key)
            if isinstance(value, str) and value:
                return value
        if isinstance(self.data, str) and self.data.strip():
            return self.data.strip()[:200]
        return f"HTTP {self.status}"


class JsonHttpClient:
    """Lazily-created aiohttp session with a per-request timeout.

    Example:
        >>> async with JsonHttpClient(timeout_seconds=10) as http:
        ...     response = await http.request("GET", "https://api.github.com/user")
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        form: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Perform a request and parse a JSON body when present.

        Raises:
            aiohttp.ClientError, asyncio.TimeoutError: On transport failure
        """
        session = await self._get_session()
        request_headers = {"Accept": "application/json"}
        request_headers.update(headers or {})

        async with session.request(
            method,
            url,
            headers=request_headers,
            json=json_body,
            data=form,
            params=params,
        ) as resp:
            text = await resp.text()
            try:
                data: Any = json.loads(text) if text else None
            except json.JSONDecodeError:
                data = text
            logger.debug(f"{method} {resp.url.path} -> {resp.status}")
            return HttpResponse(status=resp.status, data=data, headers=dict(resp.headers))

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> JsonHttpClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
