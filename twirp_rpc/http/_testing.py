# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Synchronous test client for the HTTP transport.

Provides ``_SyncTestClient`` and ``make_sync_client`` which use
``falcon.testing.TestClient`` internally, so no real HTTP server is needed.
The client is shaped like ``httpx.Client.post`` and can be handed to
:class:`twirp_rpc.client.Client` as its ``http_client``.
"""

from __future__ import annotations

from urllib.parse import urlparse

import falcon
import falcon.testing
import httpx

from twirp_rpc.service import Service

from ._server import make_wsgi_app


class _SyncTestResponse:
    """Minimal response object matching what the clients read from ``httpx.Response``."""

    __slots__ = ("content", "headers", "status_code")

    def __init__(self, status_code: int, content: bytes, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self.content = content


class _SyncTestClient:
    """Sync HTTP client that calls a Falcon WSGI app directly via falcon.testing.TestClient."""

    __slots__ = ("_client", "_default_headers")

    def __init__(
        self,
        app: falcon.App[falcon.Request, falcon.Response],
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._client = falcon.testing.TestClient(app)
        self._default_headers: dict[str, str] = default_headers or {}

    def request(
        self, method: str, url: str, *, content: bytes = b"", headers: dict[str, str] | None = None
    ) -> _SyncTestResponse:
        """Send a request with any HTTP method."""
        merged = {**self._default_headers, **(headers or {})}
        # Strip scheme+host if present (clients pass full URLs)
        path = urlparse(url).path
        result = self._client.simulate_request(method, path, body=content, headers=merged)
        return _SyncTestResponse(result.status_code, result.content, headers=dict(result.headers))

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _SyncTestResponse:
        """Send a synchronous POST using the Falcon test client."""
        return self.request("POST", url, content=content, headers=headers)

    def close(self) -> None:
        """Close the client (no-op for test client)."""


def make_sync_client(
    *services: Service,
    prefix: str = "/twirp",
    default_headers: dict[str, str] | None = None,
) -> _SyncTestClient:
    """Create a synchronous test client for one or more services.

    Uses ``falcon.testing.TestClient`` internally, so no real HTTP server
    is needed.

    Args:
        *services: The services to mount (see ``make_wsgi_app``).
        prefix: URL prefix for Twirp routes (default ``/twirp``).
        default_headers: Headers merged into every request (e.g. auth tokens).

    Returns:
        A sync client that can be passed to ``Client(..., http_client=...)``.

    """
    app = make_wsgi_app(*services, prefix=prefix)
    return _SyncTestClient(app, default_headers=default_headers)
