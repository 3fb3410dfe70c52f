# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP transport for twirp-rpc using Falcon (server) and httpx (client).

Provides ``make_wsgi_app`` to expose :class:`~twirp_rpc.service.Service`
instances as a Falcon WSGI application, ``make_sync_client`` to call it
in-process from tests, and ``RetryingTransport`` to retry transient
failures on the client side.

HTTP Wire Protocol
------------------
- ``POST {prefix}/{package.Service}/{Method}``
- Request ``Content-Type``: ``application/protobuf``, ``application/json``
  or ``application/json; strict=true``.
- Success: ``200`` with the request's content type.
- Error: the status of the error code, always ``application/json``.
"""

from twirp_rpc.http._retry import HttpRetryConfig, RetryingTransport
from twirp_rpc.http._server import make_wsgi_app
from twirp_rpc.http._testing import (
    _SyncTestClient,
    _SyncTestResponse,
    make_sync_client,
)

__all__ = [
    "HttpRetryConfig",
    "RetryingTransport",
    "_SyncTestClient",
    "_SyncTestResponse",
    "make_sync_client",
    "make_wsgi_app",
]
