"""High-level API for tunneling local connections over RPC.

This module wires the resolver, channel factory, bridge and dispatcher
together for the common cases.
"""

import asyncio
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import asynccontextmanager

from .bridge import TunnelBridge
from .channel import SecureChannelFactory
from .common.config import DispatcherConfig, TunnelConfig
from .common.logging import get_logger
from .common.sync import CancellationToken, OnceCloser
from .connection import LocalConnection
from .dispatcher import ConnectionDispatcher, IncomingConnection
from .models import TunnelResult
from .resolver import ConfigSource, EndpointResolver

logger = get_logger(__name__)


async def open_tunnel(
    connection: LocalConnection,
    instance: str,
    port: int,
    config_source: ConfigSource,
    config: TunnelConfig | None = None,
) -> TunnelResult:
    """Tunnel one local connection to an instance and wait until it ends.

    Args:
        connection: Local connection to relay; always closed on return
        instance: Instance identifier, ``region:project:name``
        port: Remote RPC port
        config_source: Source of instance addresses and TLS identities
        config: Tunnel configuration

    Returns:
        The tunnel result

    Raises:
        ResolutionError: If the instance cannot be resolved
        DialError: If the secure channel cannot be established

    Example:
        >>> result = await open_tunnel(conn, "us-central1:proj:db", 3307, source)
        >>> result.clean
        True
    """
    config = config or TunnelConfig()
    local_closer = OnceCloser(connection.close, name=f"{instance} local connection")
    try:
        endpoint = await asyncio.to_thread(
            EndpointResolver(config_source).resolve, instance, port
        )
        channel = await SecureChannelFactory(config).dial(endpoint)
    except BaseException:
        local_closer.close()
        raise

    async with channel:
        token = CancellationToken(instance)
        try:
            stream = channel.open_stream(token)
        except BaseException:
            local_closer.close()
            raise
        return await TunnelBridge(config).run(
            connection, stream, token=token, name=instance
        )


@asynccontextmanager
async def tunnel_session(
    config_source: ConfigSource,
    rpc_port: int,
    config: TunnelConfig | None = None,
    dispatcher_config: DispatcherConfig | None = None,
) -> AsyncIterator[ConnectionDispatcher]:
    """Context manager yielding a dispatcher; running tunnels are drained on exit.

    Example:
        >>> async with tunnel_session(source, 3307) as dispatcher:
        ...     await dispatcher.dispatch(IncomingConnection(instance=i, connection=c))
    """
    config = config or TunnelConfig()
    dispatcher_config = dispatcher_config or DispatcherConfig(rpc_port=rpc_port)

    dispatcher = ConnectionDispatcher(
        EndpointResolver(config_source),
        SecureChannelFactory(config),
        dispatcher_config,
        bridge=TunnelBridge(config),
    )
    logger.debug("Tunnel session started", rpc_port=dispatcher_config.rpc_port)
    try:
        yield dispatcher
    finally:
        await dispatcher.close()
        logger.debug("Tunnel session finished", results=len(dispatcher.results))


async def serve(
    source: AsyncIterable[IncomingConnection],
    rpc_port: int,
    config_source: ConfigSource,
    config: TunnelConfig | None = None,
    dispatcher_config: DispatcherConfig | None = None,
) -> list[TunnelResult]:
    """Tunnel every connection from source until it is exhausted.

    Returns:
        Results of the tunnels that ran, oldest first
    """
    async with tunnel_session(
        config_source, rpc_port, config=config, dispatcher_config=dispatcher_config
    ) as dispatcher:
        await dispatcher.run(source)
    return dispatcher.results
