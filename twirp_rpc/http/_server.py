# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP server implementation using Falcon/WSGI.

Provides ``make_wsgi_app`` to expose one or more :class:`Service` instances
as a Falcon WSGI application.  Routing to the service is done here; the
method, content type and body are checked by the service itself.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import falcon

from twirp_rpc.context import HttpRequest, HttpResponse, _current_request_id, _generate_request_id
from twirp_rpc.errors import TwirpError
from twirp_rpc.service import Service

_logger = logging.getLogger("twirp_rpc.http")

_REQUEST_ID_HEADER = "X-Request-ID"


class _RequestIdMiddleware:
    """Falcon middleware that sets a per-request correlation ID.

    Reads ``X-Request-ID`` from the incoming request header or generates a
    new 16-char hex ID.  The value is stored in ``req.context.request_id``,
    set on the ``_current_request_id`` contextvar, and echoed back on the
    response as the ``X-Request-ID`` header.
    """

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Set request ID from header or generate one; populate contextvar."""
        request_id = req.get_header(_REQUEST_ID_HEADER) or _generate_request_id()
        req.context.request_id = request_id
        req.context.request_id_token = _current_request_id.set(request_id)

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Echo request ID on response header and reset contextvar."""
        request_id = getattr(req.context, "request_id", None)
        if request_id is not None:
            resp.set_header(_REQUEST_ID_HEADER, request_id)
        token = getattr(req.context, "request_id_token", None)
        if token is not None:
            _current_request_id.reset(token)


def _apply_response(resp: falcon.Response, response: HttpResponse) -> None:
    resp.status = response.status
    for name, value in response.headers.items():
        resp.set_header(name, value)
    resp.data = response.body


class _TwirpSink:
    """Falcon sink for every request under the prefix.

    Any HTTP method reaches the sink, so a ``GET`` gets a Twirp ``bad_route``
    body rather than Falcon's own 405 page.
    """

    __slots__ = ("_prefix", "_services")

    def __init__(self, services: Mapping[str, Service], prefix: str) -> None:
        self._services = services
        self._prefix = prefix

    def _bad_route(self, req: falcon.Request, msg: str) -> HttpResponse:
        error = TwirpError.bad_route(msg, twirp_invalid_route=f"{req.method} {req.path}")
        return Service.error_response(error)

    def _route(self, req: falcon.Request) -> Service | HttpResponse:
        """Return the service mounted for the request path, or the error to render."""
        path: str = req.path
        parts = path[len(self._prefix) + 1 :].split("/") if path.startswith(self._prefix + "/") else []
        if len(parts) != 2 or not all(parts):
            return self._bad_route(
                req, f"Invalid route. Expected format: POST {{BaseURL}}{self._prefix}/{{Service}}/{{Method}}"
            )
        service = self._services.get(parts[0])
        if service is None:
            return self._bad_route(req, f"Unknown service {parts[0]!r}")
        return service

    def __call__(self, req: falcon.Request, resp: falcon.Response, **kwargs: Any) -> None:
        """Route the request to its service and copy the result to *resp*."""
        routed = self._route(req)
        if isinstance(routed, HttpResponse):
            _apply_response(resp, routed)
            return
        request = HttpRequest(req.method, req.path, req.headers, req.bounded_stream.read())
        _apply_response(resp, routed.handle(request))


def make_wsgi_app(
    *services: Service,
    prefix: str = "/twirp",
) -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app that serves Twirp requests over HTTP.

    Args:
        *services: The services to mount.  Each is reachable at
            ``POST {prefix}/{service.full_name}/{Method}``.
        prefix: URL prefix for all routes (default ``/twirp``).  ``""``
            mounts the services at the root.

    Returns:
        A Falcon application.

    Raises:
        ValueError: If no service is given or two services share a full name.

    """
    if not services:
        raise ValueError("make_wsgi_app() requires at least one service")
    by_name: dict[str, Service] = {}
    for service in services:
        if service.full_name in by_name:
            raise ValueError(f"Service {service.full_name!r} is mounted more than once")
        by_name[service.full_name] = service

    prefix = prefix.rstrip("/")
    app: falcon.App[falcon.Request, falcon.Response] = falcon.App(middleware=[_RequestIdMiddleware()])
    app.add_sink(_TwirpSink(by_name, prefix), prefix or "/")

    _logger.info(
        "WSGI app created for %s (prefix=%s)",
        ", ".join(by_name),
        prefix or "/",
        extra={"services": list(by_name), "prefix": prefix},
    )
    return app
