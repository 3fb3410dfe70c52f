# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Static service definitions: package, service name, and rpc table.

A :class:`ServiceDescriptor` is built once at startup (normally by generated
code) through :class:`ServiceBuilder` and is never mutated afterwards.  The
same descriptor is handed to the server (:class:`~twirp_rpc.service.Service`)
and to clients (:class:`~twirp_rpc.client.Client`)::

    HABERDASHER = (
        ServiceBuilder()
        .define_package("example")
        .define_service("Haberdasher")
        .define_rpc("MakeHat", Size, Hat, handler="make_hat")
        .build()
    )
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from google.protobuf.message import Message

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert a wire method name like ``MakeHat`` to ``make_hat``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class RpcDefinition:
    """One rpc method of a service.

    Attributes:
        method: Wire method name, as in the proto file and the URL path.
        input_type: Protobuf message class of the request.
        output_type: Protobuf message class of the response.
        handler: Name of the method on the handler (server) or client
            attribute that serves this rpc.

    """

    method: str
    input_type: type[Message]
    output_type: type[Message]
    handler: str


@dataclass(frozen=True)
class ServiceDescriptor:
    """Immutable description of a Twirp service."""

    package: str
    name: str
    rpcs: Mapping[str, RpcDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Freeze the rpc table."""
        object.__setattr__(self, "rpcs", MappingProxyType(dict(self.rpcs)))

    @property
    def full_name(self) -> str:
        """Service name with package prefix, e.g. ``example.v3.Haberdasher``.

        Used verbatim as the second-to-last segment of every route:
        ``{base_url}/{full_name}/{method}``.
        """
        return f"{self.package}.{self.name}" if self.package else self.name

    def rpc(self, method: str) -> RpcDefinition | None:
        """Return the definition for a wire method name, or ``None``."""
        return self.rpcs.get(method)

    def rpc_for_handler(self, handler: str) -> RpcDefinition | None:
        """Return the definition bound to a handler name, or ``None``."""
        for rpcdef in self.rpcs.values():
            if rpcdef.handler == handler:
                return rpcdef
        return None


class ServiceBuilder:
    """Registration DSL producing a :class:`ServiceDescriptor`."""

    __slots__ = ("_package", "_rpcs", "_service")

    def __init__(self) -> None:
        """Start an empty definition."""
        self._package = ""
        self._service = ""
        self._rpcs: dict[str, RpcDefinition] = {}

    def define_package(self, name: str) -> ServiceBuilder:
        """Set the proto package.  An empty package means no package."""
        self._package = str(name)
        return self

    def define_service(self, name: str) -> ServiceBuilder:
        """Set the service name."""
        self._service = str(name)
        return self

    def define_rpc(
        self,
        method: str,
        input_type: type[Message],
        output_type: type[Message],
        handler: str | None = None,
    ) -> ServiceBuilder:
        """Add an rpc method.

        Args:
            method: Wire method name (case-sensitive).
            input_type: Protobuf message class for the request.
            output_type: Protobuf message class for the response.
            handler: Handler method name.  Defaults to the snake_case form
                of *method*.

        Raises:
            ValueError: If *method* is empty or already defined.
            TypeError: If the input or output type is not a protobuf
                message class.

        """
        if not method:
            raise ValueError("rpc method can not be empty")
        if method in self._rpcs:
            raise ValueError(f"rpc method {method!r} is already defined")
        for label, msg_type in (("input_type", input_type), ("output_type", output_type)):
            if not (isinstance(msg_type, type) and issubclass(msg_type, Message)):
                raise TypeError(f"{label} must be a protobuf Message class, got {msg_type!r}")
        self._rpcs[method] = RpcDefinition(method, input_type, output_type, handler or snake_case(method))
        return self

    def build(self) -> ServiceDescriptor:
        """Return the finished, immutable descriptor.

        Raises:
            ValueError: If no service name was defined.

        """
        if not self._service:
            raise ValueError("service name is required, call define_service() first")
        return ServiceDescriptor(self._package, self._service, self._rpcs)
