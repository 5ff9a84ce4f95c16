"""Tests for tunnel wire messages."""

from rpc_tunnel.common.config import DEFAULT_RPC_METHOD
from rpc_tunnel.proto import (
    CONNECTION_METHOD,
    ClientMessage,
    ServerMessage,
    decode_client_message,
    decode_server_message,
    encode_client_message,
    encode_server_message,
)


class TestWireMessages:
    """Test message encoding."""

    def test_client_message_layout(self):
        """ClientMessage carries the chunk as bytes field 1"""
        # field 1, wire type 2 (length-delimited), length 5
        assert encode_client_message(b"hello") == b"\x0a\x05hello"

    def test_server_message_decoding(self):
        """ServerMessage payloads decode back to the raw chunk"""
        assert decode_server_message(b"\x0a\x03abc") == b"abc"

    def test_binary_payload_preserved(self):
        """Arbitrary bytes survive encoding unchanged"""
        payload = bytes(range(256))

        assert decode_client_message(encode_client_message(payload)) == payload
        assert decode_server_message(encode_server_message(payload)) == payload

    def test_empty_payload(self):
        """An empty chunk encodes to an empty message"""
        assert encode_client_message(b"") == b""
        assert decode_server_message(b"") == b""

    def test_message_types(self):
        """Message classes live in the grpcproxy package"""
        assert ClientMessage.DESCRIPTOR.full_name == "grpcproxy.ClientMessage"
        assert ServerMessage.DESCRIPTOR.full_name == "grpcproxy.ServerMessage"

    def test_default_method_path(self):
        """The default RPC method is the tunnel connection method"""
        assert CONNECTION_METHOD == "/grpcproxy.MyGrpc/Connection"
        assert DEFAULT_RPC_METHOD == CONNECTION_METHOD
