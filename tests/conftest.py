"""Shared test fixtures for twirp-rpc tests."""

from __future__ import annotations

import time
from collections.abc import Iterator

import httpx
import pytest

from twirp_rpc import Client, Service
from twirp_rpc.http import _SyncTestClient, _SyncTestResponse, make_sync_client
from twirp_rpc.service import RAISE_EXCEPTIONS_ENV

from .fake_services import FOO, HABERDASHER, FooHandler, HaberdasherHandler

BASE_URL = "http://testserver/twirp"


def _wait_for_http(port: int, timeout: float = 5.0) -> None:
    """Poll until the HTTP server is accepting connections."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            _ = httpx.get(f"http://127.0.0.1:{port}/", timeout=5.0)
            return
        except (httpx.ConnectError, httpx.ConnectTimeout):
            time.sleep(0.1)
    raise TimeoutError(f"HTTP server on port {port} did not start within {timeout}s")


class CannedClient:
    """HTTP client that answers every POST with one fixed response and records the requests."""

    def __init__(self, status_code: int, content: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self._response = _SyncTestResponse(status_code, content, headers=headers)
        self.requests: list[tuple[str, bytes, dict[str, str]]] = []
        self.closed = False

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _SyncTestResponse:
        """Record the request and return the canned response."""
        self.requests.append((url, content, headers))
        return self._response

    def close(self) -> None:
        """Record that the client was closed."""
        self.closed = True


@pytest.fixture(autouse=True)
def _no_raise_exceptions_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the debug environment flag from leaking into tests."""
    monkeypatch.delenv(RAISE_EXCEPTIONS_ENV, raising=False)


@pytest.fixture
def handler() -> HaberdasherHandler:
    """A fresh haberdasher handler that records its calls."""
    return HaberdasherHandler()


@pytest.fixture
def service(handler: HaberdasherHandler) -> Service:
    """The haberdasher service bound to ``handler``."""
    return Service(HABERDASHER, handler)


@pytest.fixture
def foo_service() -> Service:
    """The ``pkg.Foo`` service."""
    return Service(FOO, FooHandler())


@pytest.fixture
def http_client(service: Service, foo_service: Service) -> Iterator[_SyncTestClient]:
    """In-process HTTP client for both services mounted at ``/twirp``."""
    c = make_sync_client(service, foo_service)
    yield c
    c.close()


@pytest.fixture
def client(http_client: _SyncTestClient) -> Client:
    """Protobuf client for the haberdasher service."""
    return Client(HABERDASHER, BASE_URL, http_client=http_client)
