"""Tests for StreamConnection over real asyncio streams."""

import asyncio
import socket

import pytest
import pytest_asyncio
from conftest import FakeStream

from rpc_tunnel.bridge import bridge
from rpc_tunnel.common.exceptions import RemoteStreamError
from rpc_tunnel.connection import StreamConnection


@pytest_asyncio.fixture
async def socket_pair():
    """Tunnel-side StreamConnection and the peer's reader/writer."""
    left, right = socket.socketpair()
    local_reader, local_writer = await asyncio.open_connection(sock=left)
    peer_reader, peer_writer = await asyncio.open_connection(sock=right)

    yield StreamConnection(local_reader, local_writer, name="test"), peer_reader, peer_writer

    peer_writer.close()
    local_writer.close()


class TestStreamConnection:
    """Test the asyncio adapter."""

    @pytest.mark.asyncio
    async def test_read_write(self, socket_pair):
        """Bytes pass in both directions"""
        connection, peer_reader, peer_writer = socket_pair

        peer_writer.write(b"ping")
        await peer_writer.drain()
        assert await connection.read(1024) == b"ping"

        await connection.write(b"pong")
        assert await peer_reader.read(1024) == b"pong"

    @pytest.mark.asyncio
    async def test_close_releases_pending_read(self, socket_pair):
        """Closing the connection ends a pending read with EOF"""
        connection, _, _ = socket_pair
        pending = asyncio.create_task(connection.read(1024))
        await asyncio.sleep(0.01)

        connection.close()
        connection.close()

        assert await asyncio.wait_for(pending, timeout=2.0) == b""

    @pytest.mark.asyncio
    async def test_write_after_close(self, socket_pair):
        """Writing to a closed connection raises"""
        connection, _, _ = socket_pair
        connection.close()

        with pytest.raises(ConnectionResetError):
            await connection.write(b"late")

    @pytest.mark.asyncio
    async def test_name(self, socket_pair):
        """Explicit names are kept"""
        connection, _, _ = socket_pair
        assert connection.name == "test"
        assert repr(connection) == "StreamConnection(test)"


class TestBridgeOverSockets:
    """Bridge behavior seen by the local peer."""

    @pytest.mark.asyncio
    async def test_send_failure_closes_peer(self, socket_pair):
        """When the remote fails, the local peer sees its connection closed"""
        connection, peer_reader, peer_writer = socket_pair
        stream = FakeStream()
        stream.send_error = RemoteStreamError("remote gone")

        tunnel = asyncio.create_task(bridge(connection, stream))
        peer_writer.write(b"request")
        await peer_writer.drain()
        result = await asyncio.wait_for(tunnel, timeout=5.0)

        assert result.error is stream.send_error
        assert await asyncio.wait_for(peer_reader.read(1024), timeout=2.0) == b""

    @pytest.mark.asyncio
    async def test_peer_close_ends_tunnel(self, socket_pair):
        """The local peer closing mid-transfer ends the tunnel cleanly"""
        connection, peer_reader, peer_writer = socket_pair
        stream = FakeStream()
        stream.push(b"greeting")

        tunnel = asyncio.create_task(bridge(connection, stream))
        assert await asyncio.wait_for(peer_reader.read(1024), timeout=2.0) == b"greeting"
        peer_writer.write(b"bye")
        await peer_writer.drain()
        peer_writer.close()

        result = await asyncio.wait_for(tunnel, timeout=5.0)

        assert stream.sent == [b"bye"]
        assert result.clean is True
        assert result.was_read_error is True
        assert stream.cancel_calls == 1
