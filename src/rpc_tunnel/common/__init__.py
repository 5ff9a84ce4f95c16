"""Common utilities and shared functionality."""

from .config import DispatcherConfig, LogLevel, TunnelConfig
from .exceptions import (
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
from .logging import get_logger, setup_logging
from .sync import CancellationToken, FirstErrorSlot, OnceCloser
from .utils import (
    MAX_PORT,
    MIN_PORT,
    host_of,
    join_host_port,
    mask_sensitive_data,
    sanitize_log_data,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Configuration
    "TunnelConfig",
    "DispatcherConfig",
    "LogLevel",
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
    # Logging
    "get_logger",
    "setup_logging",
    # Coordination
    "CancellationToken",
    "FirstErrorSlot",
    "OnceCloser",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "host_of",
    "join_host_port",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
