# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client-side invocation: build the request, send it, classify the response.

Every failure a call can run into (application errors, malformed error
bodies, proxies and load balancers answering instead of the service,
unexpected redirects) comes back as ``ClientResp.error``.  Only transport
exceptions (connection errors, timeouts, cancellation) and schema
mismatches on a 200 response escape as exceptions.

The HTTP client is injected: anything with an ``httpx.Client``-shaped
``post(url, *, content, headers)`` works, including the in-process test
client from :func:`twirp_rpc.http.make_sync_client` and
:class:`twirp_rpc.http.RetryingTransport`.  Redirects are never followed
and nothing is retried here.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Protocol, Self

import httpx
from google.protobuf.message import Message

from twirp_rpc import encoding
from twirp_rpc.descriptor import ServiceDescriptor
from twirp_rpc.errors import ErrorCode, TwirpError, TwirpException, is_valid_code

wire_http_logger = logging.getLogger("twirp_rpc.wire.http")

INTERMEDIARY_META_KEY = "http_error_from_intermediary"


class HttpClientResponse(Protocol):
    """The parts of ``httpx.Response`` the client reads."""

    @property
    def status_code(self) -> int: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    @property
    def content(self) -> bytes: ...


class HttpClient(Protocol):
    """The parts of ``httpx.Client`` the client uses."""

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> HttpClientResponse: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# ClientResp
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientResp[T]:
    """Result of a call: exactly one of ``data`` or ``error`` is set.

    Attributes:
        data: The decoded response on success.
        error: The Twirp error on failure.
        body: Raw response body on success, for diagnostics.

    """

    data: T | None = None
    error: TwirpError | None = None
    body: bytes | None = None

    def __post_init__(self) -> None:
        """Enforce that ``data`` and ``error`` are mutually exclusive."""
        if (self.data is None) == (self.error is None):
            raise ValueError("ClientResp requires exactly one of data or error")

    @property
    def ok(self) -> bool:
        """``True`` when the call succeeded."""
        return self.error is None

    def unwrap(self) -> T:
        """Return ``data``, or raise the error.

        Raises:
            TwirpException: If the call failed.

        """
        if self.error is not None:
            raise TwirpException(self.error)
        assert self.data is not None
        return self.data


# ---------------------------------------------------------------------------
# Response classification
# ---------------------------------------------------------------------------

# Mapping used when the error did not come from a Twirp service.  Similar to
# https://github.com/grpc/grpc/blob/master/doc/http-grpc-status-mapping.md
_INTERMEDIARY_STATUS_CODES: Mapping[int, ErrorCode] = {
    400: ErrorCode.INTERNAL,
    401: ErrorCode.UNAUTHENTICATED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.BAD_ROUTE,
    429: ErrorCode.UNAVAILABLE,
    502: ErrorCode.UNAVAILABLE,
    503: ErrorCode.UNAVAILABLE,
    504: ErrorCode.UNAVAILABLE,
}


def is_http_redirect(status: int) -> bool:
    """Return ``True`` for 3xx statuses."""
    return 300 <= status <= 399


def _body_text(content: bytes) -> str:
    return content.decode(errors="replace") if content else ""


def twirp_error_from_intermediary(status: int, reason: str, body: bytes, **meta: str) -> TwirpError:
    """Build the error for a non-Twirp failure, mapped from its HTTP status.

    The result is tagged ``http_error_from_intermediary="true"`` so callers
    can tell proxy failures from genuine application errors.
    """
    code = _INTERMEDIARY_STATUS_CODES.get(status, ErrorCode.UNKNOWN)
    return TwirpError(
        code,
        code.value,
        {
            INTERMEDIARY_META_KEY: "true",
            "not_a_twirp_error_because": reason,
            "status_code": str(status),
            "body": _body_text(body),
            **meta,
        },
    )


def twirp_redirect_error(status: int, location: str | None) -> TwirpError:
    """Build the error for an unexpected redirect.

    Twirp only uses POST and never redirects, so a 3xx must come from an
    intermediary.
    """
    return TwirpError.internal(
        f"Unexpected HTTP Redirect from location={location or ''}",
        **{
            INTERMEDIARY_META_KEY: "true",
            "not_a_twirp_error_because": "Redirects not allowed on Twirp requests",
            "status_code": str(status),
            "location": location or "",
        },
    )


def error_from_response(resp: HttpClientResponse) -> TwirpError:
    """Build a :class:`TwirpError` from a non-200 response.

    A body that is a valid serialized Twirp error is trusted as is.  Anything
    else is treated as coming from an intermediary and mapped from the HTTP
    status.
    """
    status = resp.status_code
    if is_http_redirect(status):
        return twirp_redirect_error(status, resp.headers.get("Location"))

    try:
        attrs = encoding.decode_json(resp.content)
    except ValueError:
        return twirp_error_from_intermediary(status, "Response is not JSON", resp.content)

    code = attrs.get("code") if isinstance(attrs, dict) else None
    if not code:
        return twirp_error_from_intermediary(status, 'Response is JSON but it has no "code" attribute', resp.content)
    if not is_valid_code(code):
        return twirp_error_from_intermediary(
            status, f"Invalid Twirp error code: {code}", resp.content, invalid_code=str(code)
        )

    twerr = TwirpError.from_dict(attrs)
    if twerr is None:
        return twirp_error_from_intermediary(
            status, 'Response is JSON but its "meta" attribute is not a map of strings', resp.content
        )
    return twerr


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def _find_header(headers: Mapping[str, str] | None, name: str) -> str | None:
    for key, value in (headers or {}).items():
        if key.lower() == name.lower():
            return value
    return None


class _BaseClient:
    """HTTP plumbing shared by :class:`Client` and :class:`JSONClient`."""

    __slots__ = ("_base_url", "_http_client", "_own_client")

    def __init__(self, base_url: str, http_client: HttpClient | None) -> None:
        self._base_url = base_url.rstrip("/")
        self._own_client = http_client is None
        self._http_client: HttpClient = http_client if http_client is not None else httpx.Client(follow_redirects=False)

    @property
    def base_url(self) -> str:
        """Base URL including the mount prefix, e.g. ``http://localhost:8080/twirp``."""
        return self._base_url

    def _post(
        self,
        full_name: str,
        method: str,
        content_type: str,
        body: bytes,
        headers: Mapping[str, str] | None,
    ) -> HttpClientResponse:
        url = f"{self._base_url}/{full_name}/{method}"
        merged = {k: v for k, v in (headers or {}).items() if k.lower() not in ("content-type", "accept")}
        merged["Content-Type"] = content_type
        merged["Accept"] = content_type
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("POST %s: content_type=%s, body_size=%d", url, content_type, len(body))
        resp = self._http_client.post(url, content=body, headers=merged)
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug(
                "POST %s response: status=%d, content_type=%s, size=%d",
                url,
                resp.status_code,
                resp.headers.get("Content-Type"),
                len(resp.content),
            )
        return resp

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._own_client:
            self._http_client.close()

    def __enter__(self) -> Self:
        """Enter the context."""
        return self

    def __exit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        """Exit the context, closing an owned HTTP client."""
        self.close()


class Client(_BaseClient):
    """Typed client for one service.

    Rpcs are called by wire name with :meth:`call`, or as attributes named by
    their handler binding::

        with Client(HABERDASHER, "http://localhost:8080/twirp") as client:
            resp = client.make_hat(Size(inches=12))
            if resp.error is None:
                print(resp.data.color)
    """

    __slots__ = ("_content_type", "_descriptor")

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        base_url: str,
        *,
        http_client: HttpClient | None = None,
        content_type: str = encoding.PROTO,
    ) -> None:
        """Initialize the client.

        Args:
            descriptor: The service definition shared with the server.
            base_url: Base URL including the mount prefix.
            http_client: Optional injected HTTP client.  When ``None`` an
                ``httpx.Client`` is created (and closed by :meth:`close`).
            content_type: Content type for requests (protobuf by default).

        Raises:
            ValueError: If *content_type* is not a Twirp content type.

        """
        if not encoding.is_valid_content_type(content_type):
            raise ValueError(
                f"Invalid content_type {content_type!r}. Expected one of {list(encoding.VALID_CONTENT_TYPES)}"
            )
        super().__init__(base_url, http_client)
        self._descriptor = descriptor
        self._content_type = content_type

    @property
    def descriptor(self) -> ServiceDescriptor:
        """The service definition."""
        return self._descriptor

    @property
    def content_type(self) -> str:
        """Default request content type."""
        return self._content_type

    def call(
        self,
        method: str,
        input: Message | dict[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> ClientResp[Message]:
        """Make a remote procedure call.

        Args:
            method: Wire method name.
            input: Input message, or a dict of its attributes.
            headers: Extra request headers.  A ``Content-Type`` here
                overrides the client's content type for this call.

        Returns:
            A :class:`ClientResp` with the output message or the error.
            Undefined methods return ``bad_route`` without any network call.

        Raises:
            google.protobuf.message.DecodeError: If a 200 response body does
                not match the output type (likewise ``json_format.ParseError``
                for JSON).

        """
        rpcdef = self._descriptor.rpc(method)
        if rpcdef is None:
            return ClientResp(error=TwirpError.bad_route("rpc not defined on this client"))

        content_type = _find_header(headers, "Content-Type") or self._content_type
        body = encoding.encode(encoding.coerce(input, rpcdef.input_type), content_type)
        resp = self._post(self._descriptor.full_name, method, content_type, body, headers)

        if resp.status_code != 200:
            return ClientResp(error=error_from_response(resp))

        resp_content_type = resp.headers.get("Content-Type")
        if resp_content_type != content_type:
            return ClientResp(
                error=TwirpError.internal(
                    f"Expected response Content-Type {content_type!r} but found {resp_content_type!r}"
                )
            )

        data = encoding.decode(resp.content, rpcdef.output_type, content_type)
        return ClientResp(data=data, body=resp.content)

    def __getattr__(self, name: str) -> Callable[..., ClientResp[Message]]:
        """Expose each rpc as a method named by its handler binding."""
        if name.startswith("_"):
            raise AttributeError(name)
        rpcdef = self._descriptor.rpc_for_handler(name)
        if rpcdef is None:
            raise AttributeError(f"{type(self).__name__!r} has no rpc bound to {name!r}")
        return functools.partial(self.call, rpcdef.method)


class JSONClient(_BaseClient):
    """Call any rpc with plain JSON attributes, without message classes.

    Useful to exercise a service before generating code for it.  Response
    data is the decoded JSON object.
    """

    __slots__ = ("_full_name", "_strict")

    def __init__(
        self,
        base_url: str,
        *,
        service: str,
        package: str = "",
        strict: bool = False,
        http_client: HttpClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL including the mount prefix.
            service: Service name.
            package: Proto package; empty means none.
            strict: Send ``application/json; strict=true`` so the server
                rejects unknown fields.
            http_client: Optional injected HTTP client.

        Raises:
            ValueError: If *service* is empty.

        """
        if not service:
            raise ValueError("service is required")
        super().__init__(base_url, http_client)
        self._full_name = f"{package}.{service}" if package else service
        self._strict = strict

    @property
    def full_name(self) -> str:
        """Package-qualified service name."""
        return self._full_name

    def call(
        self,
        method: str,
        attrs: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> ClientResp[Any]:
        """Call *method* with *attrs* as the JSON request body.

        Raises:
            ValueError: If a 200 response body is not JSON.

        """
        content_type = encoding.JSON_STRICT if self._strict else encoding.JSON
        body = encoding.encode_json(dict(attrs or {}))
        resp = self._post(self._full_name, method, content_type, body, headers)
        if resp.status_code != 200:
            return ClientResp(error=error_from_response(resp))
        data = encoding.decode_json(resp.content)
        return ClientResp(data={} if data is None else data, body=resp.content)
