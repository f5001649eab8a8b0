"""
Exchange Adapter - HTTP Transport.

============================================================
PURPOSE
============================================================
Thin async HTTP seam between the adapters and the network.

Every adapter talks to its venue through an HttpTransport, so
tests can swap in a scripted transport without touching
aiohttp.

CONTRACT:
- Any response with a JSON body is returned, whatever the status
- A non-JSON body raises TransportError (body logged, never surfaced)
- Connection failures and timeouts raise TransportError

============================================================
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import aiohttp

from ..errors import TransportError


logger = logging.getLogger(__name__)

BODY_SNIPPET_LENGTH = 200


# ============================================================
# RESPONSE
# ============================================================

@dataclass
class HttpResponse:
    """Raw HTTP response."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value.lower()
        return ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """
        Parse the body as JSON.

        Raises:
            ValueError: If the body is not JSON
        """
        return json.loads(self.body)


# ============================================================
# TRANSPORT INTERFACE
# ============================================================

class HttpTransport(ABC):
    """Async HTTP client used by every adapter."""

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[Union[str, bytes]] = None,
    ) -> HttpResponse:
        """
        Send a request.

        Args:
            method: HTTP method
            url: Full URL, query string included
            headers: Request headers
            data: Pre-encoded request body

        Returns:
            HttpResponse

        Raises:
            TransportError: If the host cannot be reached
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass

    async def request_json(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[Union[str, bytes]] = None,
        exchange_name: str = "Exchange",
        exchange_id: Optional[str] = None,
    ) -> "JsonResponse":
        """
        Send a request and parse its JSON body.

        Raises:
            TransportError: If unreachable or the body is not JSON
        """
        response = await self.request(method, url, headers=headers, data=data)

        try:
            payload = response.json()
        except ValueError:
            logger.warning(
                f"Non-JSON response from {exchange_name} "
                f"(status={response.status}, content-type={response.content_type or 'none'})"
            )
            logger.debug(f"Body: {response.body[:BODY_SNIPPET_LENGTH]}")
            raise TransportError(
                f"{exchange_name} returned a non-JSON body (HTTP {response.status})",
                exchange_name=exchange_name,
                exchange_id=exchange_id,
                http_status=response.status,
            ) from None

        return JsonResponse(status=response.status, payload=payload)


@dataclass
class JsonResponse:
    """Parsed JSON response."""

    status: int
    payload: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


# ============================================================
# AIOHTTP TRANSPORT
# ============================================================

class AiohttpTransport(HttpTransport):
    """
    aiohttp-backed transport.

    The session is created on first use and reused until close().
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            if self._timeout_seconds is not None:
                timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
                self._session = aiohttp.ClientSession(timeout=timeout)
            else:
                self._session = aiohttp.ClientSession()
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[Union[str, bytes]] = None,
    ) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(method, url, headers=headers, data=data) as response:
                body = await response.text(errors="replace")
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=body,
                )
        except asyncio.TimeoutError:
            raise TransportError(
                f"Request timeout: {method} {url.split('?', 1)[0]}",
                timeout=True,
            ) from None
        except aiohttp.ClientError as e:
            raise TransportError(
                f"Network error: {e}",
            ) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
