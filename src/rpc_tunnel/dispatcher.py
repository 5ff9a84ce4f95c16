"""Connection dispatcher: sets up a tunnel for each accepted local connection."""

import asyncio
import itertools
from collections import deque
from collections.abc import AsyncIterable
from types import TracebackType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .bridge import TunnelBridge
from .channel import ChannelHandle, RPCStream, SecureChannelFactory
from .common.config import DispatcherConfig
from .common.exceptions import RPCTunnelError
from .common.logging import get_logger
from .common.sync import CancellationToken, OnceCloser
from .models import TunnelResult
from .resolver import EndpointResolver

logger = get_logger(__name__)


class IncomingConnection(BaseModel):
    """An accepted local connection and the instance it should reach."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    instance: str = Field(min_length=1, description="region:project:name")
    connection: Any = Field(description="LocalConnection to tunnel")
    port: int | None = Field(
        default=None, ge=1, le=65535, description="Remote port, dispatcher default if None"
    )


class ConnectionDispatcher:
    """Consumes local connections and runs one tunnel per connection.

    Setup (resolve, dial, open stream) is done one connection at a time;
    each tunnel then runs in its own task. A failed setup is logged, its
    local connection closed, and the dispatcher moves on.
    """

    def __init__(
        self,
        resolver: EndpointResolver,
        factory: SecureChannelFactory,
        config: DispatcherConfig,
        bridge: TunnelBridge | None = None,
    ):
        self.resolver = resolver
        self.factory = factory
        self.config = config
        self.bridge = bridge or TunnelBridge(factory.config)

        self._tunnels: dict[asyncio.Task[TunnelResult], CancellationToken] = {}
        self._results: deque[TunnelResult] = deque(maxlen=config.history_size)
        self._semaphore = asyncio.Semaphore(config.max_concurrent_tunnels)
        self._ids = itertools.count(1)
        self._closed = False

    @property
    def active_count(self) -> int:
        """Number of tunnels currently running"""
        return len(self._tunnels)

    @property
    def results(self) -> list[TunnelResult]:
        """Results of recently finished tunnels, oldest first"""
        return list(self._results)

    async def run(self, source: AsyncIterable[IncomingConnection]) -> None:
        """Dispatch connections from source until it is exhausted."""
        async for incoming in source:
            if self._closed:
                logger.warning("Dispatcher closed, rejecting connection", instance=incoming.instance)
                self._close_local(incoming, "dispatcher closed")
                continue
            await self.dispatch(incoming)

    async def dispatch(
        self, incoming: IncomingConnection
    ) -> asyncio.Task[TunnelResult] | None:
        """Set up a tunnel for one connection and start it in the background.

        Returns:
            The running tunnel task, or None if setup failed
        """
        name = f"tunnel-{next(self._ids)}"
        await self._semaphore.acquire()
        try:
            channel, stream, token = await self._setup(incoming, name)
        except RPCTunnelError as e:
            self._semaphore.release()
            logger.error(
                "Failed to set up tunnel",
                tunnel=name,
                instance=incoming.instance,
                error_type=type(e).__name__,
                error=str(e),
            )
            self._close_local(incoming, "setup failed")
            return None
        except BaseException:
            self._semaphore.release()
            self._close_local(incoming, "setup aborted")
            raise

        task = asyncio.create_task(
            self._run_tunnel(incoming, channel, stream, token, name), name=name
        )
        self._tunnels[task] = token
        task.add_done_callback(self._forget)
        return task

    async def _setup(
        self, incoming: IncomingConnection, name: str
    ) -> tuple[ChannelHandle, RPCStream, CancellationToken]:
        port = incoming.port or self.config.rpc_port
        # config sources may block on network refreshes
        endpoint = await asyncio.to_thread(self.resolver.resolve, incoming.instance, port)
        channel = await self.factory.dial(endpoint)

        token = CancellationToken(name)
        try:
            stream = channel.open_stream(token)
        except BaseException:
            await channel.close()
            raise

        logger.info(
            "Tunnel established",
            tunnel=name,
            instance=incoming.instance,
            address=endpoint.address,
        )
        return channel, stream, token

    async def _run_tunnel(
        self,
        incoming: IncomingConnection,
        channel: ChannelHandle,
        stream: RPCStream,
        token: CancellationToken,
        name: str,
    ) -> TunnelResult:
        try:
            result = await self.bridge.run(
                incoming.connection, stream, token=token, name=name
            )
            self._results.append(result)
            return result
        finally:
            self._semaphore.release()
            await channel.close()

    def _forget(self, task: asyncio.Task[TunnelResult]) -> None:
        self._tunnels.pop(task, None)

    def _close_local(self, incoming: IncomingConnection, reason: str) -> None:
        OnceCloser(incoming.connection.close, name=f"{incoming.instance} ({reason})").close()

    async def close(self) -> None:
        """Stop accepting work and wait for running tunnels.

        Tunnels still running after ``shutdown_timeout`` are cancelled
        through their tokens, then their tasks are cancelled.
        """
        self._closed = True
        if not self._tunnels:
            return

        tasks = set(self._tunnels)
        logger.info("Waiting for tunnels to finish", count=len(tasks))
        _, pending = await asyncio.wait(tasks, timeout=self.config.shutdown_timeout)
        if not pending:
            return

        logger.warning("Cancelling running tunnels", count=len(pending))
        for task in pending:
            token = self._tunnels.get(task)
            if token is not None:
                token.cancel()
        _, pending = await asyncio.wait(pending, timeout=self.config.shutdown_timeout)

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def __aenter__(self) -> "ConnectionDispatcher":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
