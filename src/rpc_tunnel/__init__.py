"""RPC Tunnel - relay local byte connections over a secured gRPC stream."""

# High-level API
from .api import open_tunnel, serve, tunnel_session

# Core components
from .bridge import Tunnel, TunnelBridge, TunnelState, bridge
from .channel import ChannelHandle, RPCStream, SecureChannelFactory

# Configuration
from .common.config import DispatcherConfig, LogLevel, TunnelConfig

# Exceptions
from .common.exceptions import (
    BridgeError,
    ConfigurationError,
    DialError,
    InvalidInstanceError,
    LocalConnectionClosed,
    LocalIOError,
    RemoteStreamClosed,
    RemoteStreamError,
    ResolutionError,
    RPCTunnelError,
    TunnelClosed,
)
from .common.logging import get_logger, setup_logging
from .common.sync import CancellationToken, FirstErrorSlot, OnceCloser
from .connection import LocalConnection, RemoteStream, StreamConnection
from .dispatcher import ConnectionDispatcher, IncomingConnection
from .models import (
    Direction,
    InstanceIdentifier,
    ResolvedEndpoint,
    TLSIdentity,
    TunnelResult,
)
from .resolver import ConfigSource, EndpointResolver, StaticConfigSource

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "open_tunnel",
    "serve",
    "tunnel_session",
    # Resolution
    "ConfigSource",
    "StaticConfigSource",
    "EndpointResolver",
    "InstanceIdentifier",
    "ResolvedEndpoint",
    "TLSIdentity",
    # Channels
    "SecureChannelFactory",
    "ChannelHandle",
    "RPCStream",
    # Bridge
    "Tunnel",
    "TunnelBridge",
    "TunnelState",
    "TunnelResult",
    "Direction",
    "bridge",
    "LocalConnection",
    "RemoteStream",
    "StreamConnection",
    # Dispatch
    "ConnectionDispatcher",
    "IncomingConnection",
    # Configuration
    "TunnelConfig",
    "DispatcherConfig",
    "LogLevel",
    # Coordination primitives
    "CancellationToken",
    "FirstErrorSlot",
    "OnceCloser",
    # Exceptions
    "RPCTunnelError",
    "ConfigurationError",
    "ResolutionError",
    "InvalidInstanceError",
    "DialError",
    "BridgeError",
    "LocalIOError",
    "RemoteStreamError",
    "TunnelClosed",
    "LocalConnectionClosed",
    "RemoteStreamClosed",
    # Utilities
    "get_logger",
    "setup_logging",
]
