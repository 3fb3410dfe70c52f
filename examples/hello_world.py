"""Minimal twirp-rpc example: define a service and call it in-process.

This is the quickest way to get started.  The service is mounted in a Falcon
app and called through ``make_sync_client``, so no server or network is
needed.

Run::

    python examples/hello_world.py
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message

from twirp_rpc import Client, JSONClient, RequestContext, Service, ServiceBuilder, TwirpError
from twirp_rpc.http import make_sync_client

# 1. Message types.  Real projects import these from protoc-generated
#    ``*_pb2`` modules; here they are built at runtime to keep the example
#    self-contained.
_F = descriptor_pb2.FieldDescriptorProto
_proto = descriptor_pb2.FileDescriptorProto(name="greeter.proto", package="hello", syntax="proto3")
_proto.message_type.add(name="GreetRequest").field.add(
    name="name", number=1, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL
)
_proto.message_type.add(name="GreetReply").field.add(
    name="message", number=1, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL
)
_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_proto.SerializeToString())

GreetRequest = message_factory.GetMessageClass(_pool.FindMessageTypeByName("hello.GreetRequest"))
GreetReply = message_factory.GetMessageClass(_pool.FindMessageTypeByName("hello.GreetReply"))

# 2. The service definition, shared by server and client.
GREETER = ServiceBuilder().define_package("hello").define_service("Greeter").define_rpc(
    "Greet", GreetRequest, GreetReply
).build()


# 3. Implement the handlers.  ``Greet`` binds to ``greet`` by default.
class GreeterImpl:
    """Concrete implementation of the Greeter service."""

    def greet(self, req: Message, ctx: RequestContext) -> dict[str, str] | TwirpError:
        """Return a greeting for ``req.name``."""
        if not req.name:
            return TwirpError.invalid_argument("name is required", argument="name")
        return {"message": f"Hello, {req.name}!"}


# 4. Mount the service and call it through typed and JSON clients.
def main() -> None:
    """Run the example."""
    http_client = make_sync_client(Service(GREETER, GreeterImpl()))

    client = Client(GREETER, "http://localhost/twirp", http_client=http_client)
    print(client.greet(GreetRequest(name="World")).unwrap().message)  # Hello, World!

    resp = client.call("Greet", {"name": ""})
    assert resp.error is not None
    print(f"{resp.error.code.value}: {resp.error.msg}")  # invalid_argument: name is required

    json_client = JSONClient("http://localhost/twirp", service="Greeter", package="hello", http_client=http_client)
    print(json_client.call("Greet", {"name": "JSON"}).data)  # {'message': 'Hello, JSON!'}


if __name__ == "__main__":
    main()
