"""Local byte connections handed to the tunnel bridge."""

import asyncio
from typing import Any, Protocol


class LocalConnection(Protocol):
    """Bidirectional local byte stream.

    ``read`` returns ``b""`` once the peer has closed its side. Closing the
    connection must make a pending ``read`` return or raise.
    """

    async def read(self, n: int) -> bytes:
        """Read up to n bytes."""
        ...

    async def write(self, data: bytes) -> None:
        """Write all of data."""
        ...

    def close(self) -> None:
        """Close the connection."""
        ...


class StreamConnection:
    """LocalConnection over an asyncio StreamReader/StreamWriter pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        name: str | None = None,
    ):
        self._reader = reader
        self._writer = writer
        self.name = name or self._describe_peer(writer)

    @staticmethod
    def _describe_peer(writer: asyncio.StreamWriter) -> str:
        peer: Any = writer.get_extra_info("peername")
        if isinstance(peer, tuple) and len(peer) >= 2:
            return f"{peer[0]}:{peer[1]}"
        if peer:
            return str(peer)
        return "local"

    async def read(self, n: int) -> bytes:
        return await self._reader.read(n)

    async def write(self, data: bytes) -> None:
        if self._writer.is_closing():
            raise ConnectionResetError(f"Connection {self.name} is closed")
        self._writer.write(data)
        await self._writer.drain()

    def close(self) -> None:
        # Closing the transport feeds EOF to the reader, which releases a pending read
        if not self._writer.is_closing():
            self._writer.close()

    async def wait_closed(self) -> None:
        """Wait for the underlying transport to finish closing"""
        try:
            await self._writer.wait_closed()
        except OSError:
            # peer already reset the connection; it is closed either way
            pass

    def __repr__(self) -> str:
        return f"StreamConnection({self.name})"


class RemoteStream(Protocol):
    """The RPC side of a tunnel; see channel.RPCStream."""

    async def send(self, data: bytes) -> None:
        """Send one chunk as one message."""
        ...

    async def recv(self) -> bytes:
        """Receive one message's chunk, raising RemoteStreamClosed at the end."""
        ...

    def cancel(self) -> bool:
        """Abandon the stream; idempotent."""
        ...
