"""Custom exceptions for the RPC tunnel."""


class RPCTunnelError(Exception):
    """Base exception for all RPC tunnel errors."""
    pass


class ConfigurationError(RPCTunnelError):
    """Raised when configuration is invalid."""
    pass


class ResolutionError(RPCTunnelError):
    """Raised when an instance cannot be resolved to an endpoint."""
    pass


class InvalidInstanceError(ResolutionError):
    """Raised when an instance identifier is not region:project:name."""
    pass


class DialError(RPCTunnelError):
    """Raised when the secure channel to the remote cannot be established."""
    pass


class BridgeError(RPCTunnelError):
    """Base exception for errors that terminate a running tunnel."""
    pass


class LocalIOError(BridgeError):
    """Raised when reading from or writing to the local connection fails."""
    pass


class RemoteStreamError(BridgeError):
    """Raised when sending to or receiving from the RPC stream fails."""
    pass


class TunnelClosed(BridgeError, EOFError):
    """A side of the tunnel reached a clean end of stream."""
    pass


class LocalConnectionClosed(TunnelClosed):
    """The local peer closed its connection."""
    pass


class RemoteStreamClosed(TunnelClosed):
    """The remote side finished the RPC stream."""
    pass
