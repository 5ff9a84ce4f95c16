"""Wire messages for the tunnel RPC.

The service is equivalent to::

    syntax = "proto3";
    package grpcproxy;

    message ClientMessage { bytes data = 1; }
    message ServerMessage { bytes data = 1; }

    service MyGrpc {
      rpc Connection(stream ClientMessage) returns (stream ServerMessage);
    }

Each message carries one opaque chunk of the tunneled byte stream. The
descriptors are registered in a private pool so they cannot clash with
generated modules loaded by the application.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "grpcproxy"
SERVICE = "MyGrpc"
METHOD = "Connection"


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    field = descriptor_pb2.FieldDescriptorProto
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="rpc_tunnel/tunnel.proto", package=PACKAGE, syntax="proto3"
    )

    for message_name in ("ClientMessage", "ServerMessage"):
        message = file_proto.message_type.add(name=message_name)
        message.field.add(
            name="data",
            json_name="data",
            number=1,
            type=field.TYPE_BYTES,
            label=field.LABEL_OPTIONAL,
        )

    service = file_proto.service.add(name=SERVICE)
    service.method.add(
        name=METHOD,
        input_type=f".{PACKAGE}.ClientMessage",
        output_type=f".{PACKAGE}.ServerMessage",
        client_streaming=True,
        server_streaming=True,
    )
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.Add(_file_descriptor())

ClientMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.ClientMessage")
)
ServerMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.ServerMessage")
)

# Path of the streaming method on the wire
CONNECTION_METHOD = f"/{PACKAGE}.{SERVICE}/{METHOD}"


def encode_client_message(data: bytes) -> bytes:
    """Serialize one local chunk for sending to the remote."""
    return ClientMessage(data=data).SerializeToString()


def decode_client_message(raw: bytes) -> bytes:
    """Extract the chunk from a serialized ClientMessage."""
    return ClientMessage.FromString(raw).data


def encode_server_message(data: bytes) -> bytes:
    """Serialize one remote chunk for sending to the client."""
    return ServerMessage(data=data).SerializeToString()


def decode_server_message(raw: bytes) -> bytes:
    """Extract the chunk from a serialized ServerMessage."""
    return ServerMessage.FromString(raw).data
