"""
Shared fixtures for the execution layer tests.

FakeTransport replays scripted responses keyed by method and URL
path, and records every request for assertions.
"""

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Union
from urllib.parse import parse_qsl, urlsplit

import pytest

from dca_execution.adapters.transport import HttpResponse, HttpTransport
from dca_execution.config import EngineConfig
from dca_execution.credentials import CredentialStore, InMemorySecretBackend


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[str] = None

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def query(self) -> Dict[str, str]:
        return dict(parse_qsl(urlsplit(self.url).query, keep_blank_values=True))

    @property
    def raw_query(self) -> str:
        return urlsplit(self.url).query

    @property
    def form(self) -> Dict[str, str]:
        return dict(parse_qsl(self.data or "", keep_blank_values=True))

    @property
    def json(self) -> Any:
        return json.loads(self.data) if self.data else None


class FakeTransport(HttpTransport):
    """Scripted HttpTransport. The last response of a route repeats."""

    def __init__(self):
        self._routes: Dict[tuple, Deque[Union[HttpResponse, Exception]]] = {}
        self.requests: List[RecordedRequest] = []
        self.closed = False

    def add(
        self,
        method: str,
        path: str,
        payload: Any = None,
        status: int = 200,
        body: Optional[str] = None,
        content_type: str = "application/json",
    ) -> "FakeTransport":
        if body is None:
            body = json.dumps(payload)
        response = HttpResponse(status=status, headers={"Content-Type": content_type}, body=body)
        self._routes.setdefault((method, path), deque()).append(response)
        return self

    def add_html(self, method: str, path: str, status: int = 502) -> "FakeTransport":
        return self.add(
            method,
            path,
            status=status,
            body="<html><body><h1>502 Bad Gateway</h1></body></html>",
            content_type="text/html",
        )

    def add_error(self, method: str, path: str, error: Exception) -> "FakeTransport":
        self._routes.setdefault((method, path), deque()).append(error)
        return self

    def calls(self, method: str, path: str) -> List[RecordedRequest]:
        return [r for r in self.requests if r.method == method and r.path == path]

    async def request(self, method, url, headers=None, data=None):
        recorded = RecordedRequest(method, url, dict(headers or {}), data)
        self.requests.append(recorded)

        queue = self._routes.get((method, recorded.path))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")

        response = queue[0]
        if len(queue) > 1:
            queue.popleft()

        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def backend():
    return InMemorySecretBackend()


@pytest.fixture
def store(backend):
    return CredentialStore(backend)


@pytest.fixture
def config():
    config = EngineConfig()
    config.fill_poll_delay_seconds = 0
    return config
