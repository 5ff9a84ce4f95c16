"""Secure gRPC channels to resolved endpoints and the streams opened on them."""

import asyncio
from types import TracebackType
from typing import Any

import grpc
import grpc.aio

from .common.config import TunnelConfig
from .common.exceptions import DialError, RemoteStreamClosed, RemoteStreamError
from .common.logging import get_logger
from .common.sync import CancellationToken
from .models import ResolvedEndpoint
from .proto import decode_server_message, encode_client_message

logger = get_logger(__name__)

_STREAM_FAILURES = (grpc.aio.AioRpcError, grpc.aio.UsageError, asyncio.InvalidStateError)


def _describe(error: BaseException) -> str:
    if isinstance(error, grpc.aio.AioRpcError):
        return f"{error.code().name}: {error.details()}"
    return str(error) or type(error).__name__


class RPCStream:
    """One bidirectional tunnel stream; each message is one opaque chunk."""

    def __init__(self, call: Any, name: str = "stream"):
        self._call = call
        self.name = name
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def send(self, data: bytes) -> None:
        """Send one chunk as a single RPC message.

        Raises:
            RemoteStreamError: If the stream is cancelled or the write fails
        """
        if self._cancelled:
            raise RemoteStreamError(f"Stream {self.name} was cancelled")
        try:
            await self._call.write(data)
        except _STREAM_FAILURES as e:
            raise RemoteStreamError(f"Send on {self.name} failed: {_describe(e)}") from e
        except asyncio.CancelledError as e:
            if not self._owns_cancellation():
                raise
            raise RemoteStreamError(f"Stream {self.name} was cancelled") from e

    async def recv(self) -> bytes:
        """Receive the next chunk.

        Raises:
            RemoteStreamClosed: If the remote finished the stream
            RemoteStreamError: If the stream is cancelled or the read fails
        """
        try:
            message = await self._call.read()
        except _STREAM_FAILURES as e:
            raise RemoteStreamError(f"Receive on {self.name} failed: {_describe(e)}") from e
        except asyncio.CancelledError as e:
            if not self._owns_cancellation():
                raise
            raise RemoteStreamError(f"Stream {self.name} was cancelled") from e

        if message is grpc.aio.EOF:
            raise RemoteStreamClosed(f"Remote closed stream {self.name}")
        return message

    def cancel(self) -> bool:
        """Abandon the stream. Safe to call more than once."""
        if self._cancelled:
            return False
        self._cancelled = True
        return bool(self._call.cancel())

    def _owns_cancellation(self) -> bool:
        # A CancelledError from the call is ours to translate only when the
        # stream was cancelled and the running task itself was not.
        task = asyncio.current_task()
        return self._cancelled and not (task is not None and task.cancelling())


class ChannelHandle:
    """An open secure channel able to start tunnel streams."""

    def __init__(
        self,
        channel: grpc.aio.Channel,
        endpoint: ResolvedEndpoint,
        config: TunnelConfig,
    ):
        self._channel = channel
        self.endpoint = endpoint
        self.config = config
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def open_stream(self, token: CancellationToken | None = None) -> RPCStream:
        """Open one tunnel stream.

        Args:
            token: Cancellation token that abandons the stream when triggered

        Raises:
            DialError: If the channel is already closed
        """
        if self._closed:
            raise DialError(f"Channel to {self.endpoint.address} is closed")

        connection = self._channel.stream_stream(
            self.config.rpc_method,
            request_serializer=encode_client_message,
            response_deserializer=decode_server_message,
        )
        call = connection(wait_for_ready=self.config.wait_for_ready)
        stream = RPCStream(call, name=str(self.endpoint.instance))

        if token is not None:
            token.add_callback(stream.cancel)

        logger.debug(
            "Opened tunnel stream",
            instance=str(self.endpoint.instance),
            method=self.config.rpc_method,
        )
        return stream

    async def close(self) -> None:
        """Close the channel. Later calls do nothing."""
        if self._closed:
            return
        self._closed = True
        await self._channel.close()
        logger.debug("Channel closed", address=self.endpoint.address)

    async def __aenter__(self) -> "ChannelHandle":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


class SecureChannelFactory:
    """Dials TLS-secured gRPC channels to resolved endpoints.

    Certificates are verified against the endpoint's TLS server name rather
    than the host being dialed.
    """

    def __init__(self, config: TunnelConfig | None = None):
        self.config = config or TunnelConfig()

    def credentials(self, endpoint: ResolvedEndpoint) -> grpc.ChannelCredentials:
        """Build channel credentials from the endpoint's TLS identity"""
        tls = endpoint.tls
        return grpc.ssl_channel_credentials(
            root_certificates=tls.root_certificates,
            private_key=tls.private_key,
            certificate_chain=tls.certificate_chain,
        )

    def channel_options(self, endpoint: ResolvedEndpoint) -> list[tuple[str, Any]]:
        """Channel arguments for dialing endpoint"""
        options: list[tuple[str, Any]] = [
            ("grpc.ssl_target_name_override", endpoint.tls_server_name),
        ]
        options.extend(self.config.channel_options)
        return options

    async def dial(self, endpoint: ResolvedEndpoint) -> ChannelHandle:
        """Open a secure channel to endpoint and wait until it is ready.

        Args:
            endpoint: Endpoint returned by the resolver

        Returns:
            Handle for opening tunnel streams

        Raises:
            DialError: If credentials are unusable or the channel does not
                become ready within the dial timeout
        """
        logger.debug(
            "Dialing endpoint",
            address=endpoint.address,
            tls_server_name=endpoint.tls_server_name,
            **endpoint.tls.log_fields(),
        )
        try:
            credentials = self.credentials(endpoint)
            channel = grpc.aio.secure_channel(
                endpoint.address,
                credentials,
                options=self.channel_options(endpoint),
            )
        except (ValueError, TypeError, RuntimeError) as e:
            raise DialError(f"Cannot create channel to {endpoint.address}: {e}") from e

        try:
            await asyncio.wait_for(
                channel.channel_ready(), timeout=self.config.dial_timeout
            )
        except asyncio.TimeoutError as e:
            await channel.close()
            logger.warning(
                "Channel not ready before timeout",
                address=endpoint.address,
                timeout=self.config.dial_timeout,
            )
            raise DialError(
                f"Channel to {endpoint.address} not ready after "
                f"{self.config.dial_timeout}s"
            ) from e
        except grpc.aio.AioRpcError as e:
            await channel.close()
            raise DialError(f"Dial to {endpoint.address} failed: {_describe(e)}") from e

        logger.info(
            "Channel ready",
            address=endpoint.address,
            tls_server_name=endpoint.tls_server_name,
        )
        return ChannelHandle(channel, endpoint, self.config)
