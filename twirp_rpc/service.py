# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Server-side dispatch: route, decode, run hooks, call the handler, render.

:class:`Service` binds a :class:`~twirp_rpc.descriptor.ServiceDescriptor` to
a handler object and turns one :class:`~twirp_rpc.context.HttpRequest` into
one :class:`~twirp_rpc.context.HttpResponse`.  It knows nothing about the
HTTP server in front of it; see :func:`twirp_rpc.http.make_wsgi_app`.

Every request ends in exactly one rendered response.  Twirp errors are
always JSON (even for protobuf requests) with the HTTP status of their code.
Unexpected exceptions from hooks, handlers, or encoding are contained once,
here, and rendered as ``internal`` unless ``raise_exceptions`` is set.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from typing import Any

from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message

from twirp_rpc import encoding
from twirp_rpc.context import HttpRequest, HttpResponse, RequestContext, _current_request_id
from twirp_rpc.descriptor import ServiceDescriptor
from twirp_rpc.errors import TwirpError, TwirpException
from twirp_rpc.hooks import BeforeHook, ErrorHook, ExceptionHook, HookPipeline, SuccessHook

_logger = logging.getLogger("twirp_rpc.server")
_access_logger = logging.getLogger("twirp_rpc.access")

RAISE_EXCEPTIONS_ENV = "TWIRP_RPC_RAISE_EXCEPTIONS"

type Handler = Callable[[Any, RequestContext], Any]


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _log_exception(service: str, method: str, exc: BaseException) -> str:
    """Log an exception contained by the dispatcher and return its class name."""
    error_type = type(exc).__name__
    extra: dict[str, object] = {"service": service, "method": method, "error_type": error_type}
    request_id = _current_request_id.get()
    if request_id:
        extra["request_id"] = request_id
    _logger.error("Error in %s/%s: %s", service, method, exc, exc_info=exc, extra=extra)
    return error_type


def _emit_access_log(
    service: str,
    method: str,
    content_type: str,
    duration_ms: float,
    http_status: int,
    error_code: str = "",
) -> None:
    """Emit a structured access log record for a handled request."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    try:
        status = "error" if error_code else "ok"
        extra: dict[str, object] = {
            "service": service,
            "method": method,
            "content_type": content_type,
            "duration_ms": round(duration_ms, 2),
            "status": status,
            "http_status": http_status,
            "error_code": error_code,
        }
        request_id = _current_request_id.get()
        if request_id:
            extra["request_id"] = request_id
        _access_logger.info("%s/%s %s", service, method, status, extra=extra)
    except Exception:
        _logger.debug("Access log emission failed", exc_info=True)


class Service:
    """A Twirp service: a descriptor, a handler object, and its hooks.

    Handler methods are looked up once, by each rpc's ``handler`` name, and
    called as ``handler.make_hat(input, ctx)``.  They may return the output
    message, a ``dict`` of output attributes, or a :class:`TwirpError`, or
    raise :class:`TwirpException`.
    """

    __slots__ = ("_descriptor", "_handler", "_handlers", "_hooks", "raise_exceptions")

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        handler: object,
        *,
        raise_exceptions: bool | None = None,
    ) -> None:
        """Bind *handler* to *descriptor*.

        Args:
            descriptor: The service definition.
            handler: Object implementing the rpc handler methods.  Missing
                methods are answered with ``unimplemented``.
            raise_exceptions: Let unexpected exceptions propagate instead of
                rendering them as ``internal`` errors.  Useful in tests.
                Defaults to the ``TWIRP_RPC_RAISE_EXCEPTIONS`` environment
                variable.

        """
        self._descriptor = descriptor
        self._handler = handler
        self._handlers: dict[str, Handler] = {}
        for rpcdef in descriptor.rpcs.values():
            fn = getattr(handler, rpcdef.handler, None)
            if callable(fn):
                self._handlers[rpcdef.method] = fn
        self._hooks = HookPipeline()
        self.raise_exceptions = _env_flag(RAISE_EXCEPTIONS_ENV) if raise_exceptions is None else raise_exceptions

    @property
    def descriptor(self) -> ServiceDescriptor:
        """The service definition."""
        return self._descriptor

    @property
    def handler(self) -> object:
        """The object serving the rpcs."""
        return self._handler

    @property
    def full_name(self) -> str:
        """Package-qualified service name used for routing."""
        return self._descriptor.full_name

    @property
    def name(self) -> str:
        """Service name without package."""
        return self._descriptor.name

    @property
    def hooks(self) -> HookPipeline:
        """The hook lists of this service."""
        return self._hooks

    def before(self, hook: BeforeHook) -> BeforeHook:
        """Register a before hook (usable as a decorator)."""
        return self._hooks.before(hook)

    def on_success(self, hook: SuccessHook) -> SuccessHook:
        """Register a success hook (usable as a decorator)."""
        return self._hooks.on_success(hook)

    def on_error(self, hook: ErrorHook) -> ErrorHook:
        """Register an error hook (usable as a decorator)."""
        return self._hooks.on_error(hook)

    def exception_raised(self, hook: ExceptionHook) -> ExceptionHook:
        """Register an exception hook (usable as a decorator)."""
        return self._hooks.exception_raised(hook)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Serve one HTTP request.

        Raises:
            Exception: Only when ``raise_exceptions`` is set; otherwise every
                failure is rendered as a Twirp error response.

        """
        ctx = RequestContext(request=request)
        start = time.monotonic()
        error: TwirpError | None = None
        try:
            error = self._route_request(request, ctx) or self._hooks.run_before(request, ctx)
            if error is None:
                result = self._call_handler(ctx)
                if isinstance(result, TwirpError):
                    error = result
                else:
                    ctx.output = result
                    error = self._hooks.run_on_success(ctx)
            if error is None:
                response = self._success_response(ctx)
            else:
                self._hooks.run_on_error(error, ctx)
                response = self.error_response(error)
        except Exception as exc:
            if self.raise_exceptions:
                raise
            reported = self._hooks.run_exception_raised(exc, ctx)
            _log_exception(self.full_name, ctx.method or "", reported)
            error = TwirpError.internal_with(reported)
            response = self.error_response(error)

        _emit_access_log(
            self.full_name,
            ctx.method or "",
            ctx.content_type or "",
            (time.monotonic() - start) * 1000,
            response.status,
            error.code.value if error is not None else "",
        )
        return response

    def call_rpc(
        self,
        method: str,
        input: Message | dict[str, Any] | None = None,
        *,
        content_type: str = encoding.PROTO,
        **values: Any,
    ) -> Message | TwirpError:
        """Call a handler directly, without routing, hooks, or containment.

        Meant for unit-testing handlers.  *values* pre-populate the context
        side channel, standing in for what before hooks would add.

        Returns:
            The output message, or the :class:`TwirpError` the handler
            produced (``bad_route`` for an unknown *method*).

        """
        rpcdef = self._descriptor.rpc(method)
        if rpcdef is None:
            return TwirpError.bad_route(f"Invalid rpc method {method!r}")
        ctx = RequestContext(
            rpc=rpcdef,
            content_type=content_type,
            input=encoding.coerce(input, rpcdef.input_type),
            values=dict(values),
        )
        return self._call_handler(ctx)

    @staticmethod
    def error_response(error: TwirpError) -> HttpResponse:
        """Render a Twirp error.  Always JSON, even for protobuf requests."""
        return HttpResponse(error.http_status, {"Content-Type": encoding.JSON}, error.to_json())

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _bad_route(self, msg: str, request: HttpRequest) -> TwirpError:
        return TwirpError.bad_route(msg, twirp_invalid_route=f"{request.method} {request.path}")

    def _route_request(self, request: HttpRequest, ctx: RequestContext) -> TwirpError | None:
        """Match the request to an rpc and decode its body into ``ctx``.

        Returns:
            ``None`` on success, ``bad_route`` when the request matches no
            rpc, or ``malformed`` when the body cannot be decoded.

        """
        if request.method != "POST":
            return self._bad_route("HTTP request method must be POST", request)

        content_type = request.content_type
        if not encoding.is_valid_content_type(content_type):
            return self._bad_route(
                f"Unexpected Content-Type: {content_type!r}. "
                f"Content-Type header must be one of {list(encoding.VALID_CONTENT_TYPES)}",
                request,
            )
        assert content_type is not None
        ctx.content_type = content_type

        parts = request.path.split("/")
        if len(parts) < 3 or parts[-2] != self.full_name:
            return self._bad_route(
                f"Invalid route. Expected format: POST {{BaseURL}}/{self.full_name}/{{Method}}", request
            )

        method = parts[-1]
        rpcdef = self._descriptor.rpc(method)
        if rpcdef is None:
            return self._bad_route(f"Invalid rpc method {method!r}", request)
        ctx.rpc = rpcdef

        try:
            ctx.input = encoding.decode(request.body, rpcdef.input_type, content_type)
        except (DecodeError, json_format.ParseError, ValueError, TypeError) as exc:
            return TwirpError.malformed(
                f"Invalid request body for rpc method {method!r} with Content-Type={content_type}: {exc}",
                content_type=content_type,
            )
        return None

    def _call_handler(self, ctx: RequestContext) -> Message | TwirpError:
        """Invoke the bound handler and normalize its return value."""
        rpcdef = ctx.rpc
        assert rpcdef is not None
        fn = self._handlers.get(rpcdef.method)
        if fn is None:
            return TwirpError.unimplemented(f"Handler method {rpcdef.handler} is not implemented.")

        try:
            out = fn(ctx.input, ctx)
        except TwirpException as exc:
            return exc.error

        if isinstance(out, (rpcdef.output_type, TwirpError)):
            return out
        if isinstance(out, dict):
            return rpcdef.output_type(**out)
        return TwirpError.internal(
            f"Handler method {rpcdef.handler} expected to return one of "
            f"{rpcdef.output_type.__name__}, dict or TwirpError, but returned {type(out).__name__}."
        )

    def _success_response(self, ctx: RequestContext) -> HttpResponse:
        assert ctx.output is not None and ctx.content_type is not None
        headers = {**ctx.response_headers, "Content-Type": ctx.content_type}
        return HttpResponse(200, headers, encoding.encode(ctx.output, ctx.content_type))
