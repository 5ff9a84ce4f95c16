"""Full-duplex relay between a local connection and an RPC stream.

A tunnel runs two pumps as asyncio tasks:

* local -> remote reads at most ``buffer_size`` bytes from the local
  connection and sends them as one RPC message;
* remote -> local receives RPC messages and writes their payload locally.

The first pump to stop records its error in a single-slot recorder, triggers
the tunnel's cancellation token (which abandons the RPC stream) and closes
the local connection. The other pump then fails on its next operation, or
is released from a pending one by the close, and exits; its error is
discarded. ``TunnelBridge.run`` returns only once both pumps have exited.

A local read either returns data or raises, so no chunk is ever read and
failed at once: every chunk read is sent before the next read is attempted,
and a failure never discards bytes that were already read.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .common.config import TunnelConfig
from .common.exceptions import (
    BridgeError,
    LocalConnectionClosed,
    LocalIOError,
    RemoteStreamError,
)
from .common.logging import get_logger
from .common.sync import CancellationToken, FirstErrorSlot, OnceCloser
from .connection import LocalConnection, RemoteStream
from .models import Direction, TunnelResult

logger = get_logger(__name__)


class TunnelState(str, Enum):
    """Lifecycle of a tunnel."""

    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class Termination:
    """Why a pump stopped."""

    error: BaseException
    was_read_error: bool
    direction: Direction


def _wrap(
    error_type: type[BridgeError], message: str, cause: BaseException
) -> BaseException:
    if isinstance(cause, BridgeError):
        return cause
    error = error_type(f"{message}: {cause}")
    error.__cause__ = cause
    return error


class Tunnel:
    """One local connection paired with one RPC stream. Not reusable."""

    def __init__(
        self,
        local: LocalConnection,
        stream: RemoteStream,
        token: CancellationToken | None = None,
        buffer_size: int = 1024,
        name: str = "tunnel",
    ):
        if buffer_size < 1:
            raise ValueError("Buffer size must be positive")

        self.local = local
        self.stream = stream
        self.name = name
        self.token = token or CancellationToken(name)
        self.buffer_size = buffer_size

        self.bytes_sent = 0
        self.bytes_received = 0

        self._state = TunnelState.OPEN
        self._started = False
        self._slot: FirstErrorSlot[Termination] = FirstErrorSlot()
        self._local_closer = OnceCloser(local.close, name=f"{name} local connection")
        self.token.add_callback(stream.cancel)

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def termination(self) -> Termination | None:
        """The first recorded termination, if any"""
        return self._slot.value

    async def run(self) -> TunnelResult:
        """Relay bytes until either side stops, then tear both down.

        Returns:
            Result holding the first terminal error

        Raises:
            RuntimeError: If the tunnel was already run
        """
        if self._started:
            raise RuntimeError(f"Tunnel {self.name} has already been run")
        self._started = True

        started_at = datetime.now()
        logger.debug("Tunnel open", tunnel=self.name, buffer_size=self.buffer_size)

        outbound = asyncio.create_task(
            self._pump_to_remote(), name=f"{self.name}:local->remote"
        )
        inbound = asyncio.create_task(
            self._pump_to_local(), name=f"{self.name}:remote->local"
        )
        try:
            await asyncio.gather(outbound, inbound)
        finally:
            # also reached when run() itself is cancelled
            self.token.cancel()
            self._local_closer.close()
            self._state = TunnelState.CLOSED

        result = self._result(started_at)
        self._log_result(result)
        return result

    def _terminate(
        self, error: BaseException, was_read_error: bool, direction: Direction
    ) -> None:
        if self._slot.offer(Termination(error, was_read_error, direction)):
            self._state = TunnelState.CLOSING
            logger.debug(
                "Tunnel shutting down",
                tunnel=self.name,
                direction=direction.value,
                was_read_error=was_read_error,
                error=str(error),
            )
        self.token.cancel()
        self._local_closer.close()

    def _stopped(self, direction: Direction) -> bool:
        if not self.token.cancelled:
            return False
        self._terminate(
            BridgeError(f"Tunnel {self.name} was cancelled"), False, direction
        )
        return True

    async def _pump_to_remote(self) -> None:
        direction = Direction.LOCAL_TO_REMOTE
        while not self._stopped(direction):
            try:
                data = await self.local.read(self.buffer_size)
            except Exception as e:
                self._terminate(
                    _wrap(LocalIOError, "Read from local connection failed", e),
                    True,
                    direction,
                )
                return

            if not data:
                self._terminate(
                    LocalConnectionClosed(f"Local peer of {self.name} closed the connection"),
                    True,
                    direction,
                )
                return

            try:
                await self.stream.send(data)
            except Exception as e:
                self._terminate(
                    _wrap(RemoteStreamError, "Send to remote failed", e),
                    False,
                    direction,
                )
                return
            self.bytes_sent += len(data)

    async def _pump_to_local(self) -> None:
        direction = Direction.REMOTE_TO_LOCAL
        while not self._stopped(direction):
            try:
                data = await self.stream.recv()
            except Exception as e:
                self._terminate(
                    _wrap(RemoteStreamError, "Receive from remote failed", e),
                    True,
                    direction,
                )
                return

            if not data:
                continue

            try:
                await self.local.write(data)
            except Exception as e:
                self._terminate(
                    _wrap(LocalIOError, "Write to local connection failed", e),
                    False,
                    direction,
                )
                return
            self.bytes_received += len(data)

    def _result(self, started_at: datetime) -> TunnelResult:
        termination = self._slot.value
        return TunnelResult(
            error=termination.error if termination else None,
            was_read_error=termination.was_read_error if termination else False,
            direction=termination.direction if termination else None,
            bytes_sent=self.bytes_sent,
            bytes_received=self.bytes_received,
            started_at=started_at,
            finished_at=datetime.now(),
        )

    def _log_result(self, result: TunnelResult) -> None:
        if result.clean:
            logger.info("Tunnel closed", tunnel=self.name, **result.log_fields())
        else:
            logger.warning("Tunnel failed", tunnel=self.name, **result.log_fields())


class TunnelBridge:
    """Runs tunnels with a shared configuration."""

    def __init__(self, config: TunnelConfig | None = None):
        self.config = config or TunnelConfig()

    async def run(
        self,
        local: LocalConnection,
        stream: RemoteStream,
        token: CancellationToken | None = None,
        name: str = "tunnel",
    ) -> TunnelResult:
        """Relay between local and stream until either side terminates.

        Args:
            local: Local connection; closed before this returns
            stream: RPC stream owned by this tunnel; cancelled before this returns
            token: Cancellation token for the tunnel (a new one if None)
            name: Label used in logs

        Returns:
            Result holding the first terminal error and the read-side flag
        """
        tunnel = Tunnel(
            local,
            stream,
            token=token,
            buffer_size=self.config.buffer_size,
            name=name,
        )
        return await tunnel.run()


async def bridge(
    local: LocalConnection,
    stream: RemoteStream,
    token: CancellationToken | None = None,
    buffer_size: int = 1024,
) -> TunnelResult:
    """Relay one local connection over one RPC stream; see TunnelBridge.run."""
    return await Tunnel(local, stream, token=token, buffer_size=buffer_size).run()

