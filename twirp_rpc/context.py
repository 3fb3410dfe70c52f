# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Transport-neutral request/response values and the per-call context."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from google.protobuf.message import Message

from twirp_rpc.descriptor import RpcDefinition


class HttpRequest:
    """Inbound HTTP request as delivered by a server adapter.

    Header names are matched case-insensitively.
    """

    __slots__ = ("body", "headers", "method", "path")

    def __init__(self, method: str, path: str, headers: Mapping[str, str] | None = None, body: bytes = b"") -> None:
        """Initialize, normalizing header names to lowercase."""
        self.method = method.upper()
        self.path = path
        self.headers: dict[str, str] = {k.lower(): v for k, v in (headers or {}).items()}
        self.body = body

    def get_header(self, name: str) -> str | None:
        """Return a request header value, or ``None`` if absent."""
        return self.headers.get(name.lower())

    @property
    def content_type(self) -> str | None:
        """Raw ``Content-Type`` header."""
        return self.get_header("Content-Type")


@dataclass
class HttpResponse:
    """Outbound HTTP response handed back to a server adapter."""

    status: int
    headers: dict[str, str]
    body: bytes


@dataclass
class RequestContext:
    """Per-call state, created at the start of dispatch and discarded at the end.

    Statically known fields are real attributes.  ``values`` is a free-form
    side channel for hooks and handlers to pass data to each other; it is
    also reachable with item syntax (``ctx["user"] = ...``).

    Attributes:
        request: The raw transport request (``None`` for direct ``call_rpc``).
        rpc: Matched rpc definition, set once routing succeeds.
        content_type: Negotiated content type.
        input: Decoded request message.
        output: Response message, set before success hooks run.
        response_headers: Extra headers added to a successful response.
        values: Hook-to-hook side channel, in insertion order.

    """

    request: HttpRequest | None = None
    rpc: RpcDefinition | None = None
    content_type: str | None = None
    input: Message | None = None
    output: Message | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def method(self) -> str | None:
        """Wire method name of the matched rpc, if routing got that far."""
        return self.rpc.method if self.rpc is not None else None

    def get_http_request_header(self, name: str) -> str | None:
        """Read a header of the inbound HTTP request (case-insensitive)."""
        if self.request is None:
            return None
        return self.request.get_header(name)

    def set_http_response_header(self, name: str, value: str) -> None:
        """Add a header to the successful HTTP response."""
        self.response_headers[name] = value

    def __getitem__(self, key: str) -> Any:
        """Read a side-channel value."""
        return self.values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        """Write a side-channel value."""
        self.values[key] = value

    def __contains__(self, key: object) -> bool:
        """Check for a side-channel value."""
        return key in self.values

    def get(self, key: str, default: Any = None) -> Any:
        """Read a side-channel value with a default."""
        return self.values.get(key, default)


# ---------------------------------------------------------------------------
# Per-request correlation ID
# ---------------------------------------------------------------------------


def _generate_request_id() -> str:
    """Generate a 16-char hex request ID for correlation."""
    return uuid.uuid4().hex[:16]


_current_request_id: ContextVar[str] = ContextVar("twirp_rpc_request_id", default="")
