"""Configuration models for tunnels and the connection dispatcher."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Bytes read from the local connection per RPC message
DEFAULT_BUFFER_SIZE = 1024
MAX_BUFFER_SIZE = 1024 * 1024

DEFAULT_RPC_METHOD = "/grpcproxy.MyGrpc/Connection"


class LogLevel(str, Enum):
    """Log levels accepted by setup_logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TunnelConfig(BaseModel):
    """Pydantic configuration for dialing and bridging a single tunnel"""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    buffer_size: int = Field(
        default=DEFAULT_BUFFER_SIZE,
        ge=1,
        le=MAX_BUFFER_SIZE,
        description="Maximum bytes forwarded per RPC message",
    )
    rpc_method: str = Field(
        default=DEFAULT_RPC_METHOD,
        min_length=3,
        description="Fully qualified streaming RPC method path",
    )
    dial_timeout: float = Field(
        default=10.0, gt=0.0, le=300.0, description="Channel readiness timeout in seconds"
    )
    wait_for_ready: bool = Field(
        default=True, description="Queue stream RPCs until the channel is ready"
    )
    channel_options: list[tuple[str, int | str]] = Field(
        default_factory=list, description="Extra gRPC channel arguments"
    )
    log_level: LogLevel = Field(default=LogLevel.INFO)

    @field_validator("rpc_method")
    @classmethod
    def validate_rpc_method(cls, v: str) -> str:
        """Validate method path format: /package.Service/Method"""
        parts = v.split("/")
        if len(parts) != 3 or parts[0] != "" or not parts[1] or not parts[2]:
            raise ValueError("RPC method must look like '/package.Service/Method'")
        return v


class DispatcherConfig(BaseModel):
    """Configuration for the connection dispatcher"""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    rpc_port: int = Field(..., ge=1, le=65535, description="Remote RPC port")
    max_concurrent_tunnels: int = Field(
        default=100, ge=1, le=10000, description="Maximum tunnels running at once"
    )
    shutdown_timeout: float = Field(
        default=5.0, ge=0.0, le=300.0, description="Seconds to wait for tunnels on close"
    )
    history_size: int = Field(
        default=100, ge=0, le=10000, description="Finished tunnel results kept for diagnostics"
    )
