"""Haberdasher server using Falcon (WSGI) and waitress.

Requires the examples extra: ``pip install twirp-rpc[examples]``

Start the server::

    python examples/http_server.py

Then run the client in another terminal::

    python examples/http_client.py
"""

from __future__ import annotations

import logging
import random
import socket
import sys

import waitress
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message

from twirp_rpc import RequestContext, Service, ServiceBuilder, TwirpError
from twirp_rpc.http import make_wsgi_app

PORT = 8080

# ---------------------------------------------------------------------------
# Service definition
# ---------------------------------------------------------------------------


def _build_messages() -> tuple[type[Message], type[Message]]:
    """Build ``example.Size`` and ``example.Hat`` (normally from ``haberdasher_pb2``)."""
    f = descriptor_pb2.FieldDescriptorProto
    proto = descriptor_pb2.FileDescriptorProto(name="haberdasher.proto", package="example", syntax="proto3")
    proto.message_type.add(name="Size").field.add(name="inches", number=1, type=f.TYPE_INT32, label=f.LABEL_OPTIONAL)
    hat = proto.message_type.add(name="Hat")
    hat.field.add(name="inches", number=1, type=f.TYPE_INT32, label=f.LABEL_OPTIONAL)
    hat.field.add(name="color", number=2, type=f.TYPE_STRING, label=f.LABEL_OPTIONAL)
    hat.field.add(name="name", number=3, type=f.TYPE_STRING, label=f.LABEL_OPTIONAL)
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(proto.SerializeToString())
    return (
        message_factory.GetMessageClass(pool.FindMessageTypeByName("example.Size")),
        message_factory.GetMessageClass(pool.FindMessageTypeByName("example.Hat")),
    )


Size, Hat = _build_messages()

HABERDASHER = (
    ServiceBuilder().define_package("example").define_service("Haberdasher").define_rpc("MakeHat", Size, Hat).build()
)


class HaberdasherImpl:
    """Makes hats."""

    def make_hat(self, size: Message, ctx: RequestContext) -> Message | TwirpError:
        """Make a hat of the requested size in a random color."""
        if size.inches <= 0:
            return TwirpError.invalid_argument("I can't make a hat that small!", argument="inches")
        return Hat(
            inches=size.inches,
            color=random.choice(["white", "black", "brown", "red", "blue"]),
            name=random.choice(["bowler", "baseball cap", "top hat", "derby"]),
        )


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def _find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def main() -> None:
    """Start the HTTP server."""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else PORT
    if port == 0:
        port = _find_free_port()

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    service = Service(HABERDASHER, HaberdasherImpl())

    @service.on_error
    def _log_error(error: TwirpError, ctx: RequestContext) -> None:
        logging.getLogger("haberdasher").warning("%s failed: %s: %s", ctx.method, error.code.value, error.msg)

    app = make_wsgi_app(service)

    print(f"Serving example.Haberdasher on http://127.0.0.1:{port}/twirp", flush=True)
    waitress.serve(app, host="127.0.0.1", port=port, _quiet=True)


if __name__ == "__main__":
    main()
