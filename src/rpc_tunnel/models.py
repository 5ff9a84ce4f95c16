"""Data models for instances, resolved endpoints and tunnel results."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.exceptions import InvalidInstanceError, TunnelClosed
from .common.utils import sanitize_log_data, validate_non_empty_string

INSTANCE_SEPARATOR = ":"


class InstanceIdentifier(BaseModel):
    """Three-part instance identifier: ``region:project:name``."""

    model_config = ConfigDict(frozen=True)

    region: str = Field(min_length=1)
    project: str = Field(min_length=1)
    name: str = Field(min_length=1)

    @field_validator("region", "project", "name")
    @classmethod
    def validate_segment(cls, v: str) -> str:
        """Segments cannot contain the separator or surrounding whitespace"""
        if INSTANCE_SEPARATOR in v:
            raise ValueError("Instance segment cannot contain ':'")
        if validate_non_empty_string(v, "Instance segment") != v:
            raise ValueError("Instance segment cannot have surrounding whitespace")
        return v

    @classmethod
    def parse(cls, value: str) -> "InstanceIdentifier":
        """Parse an instance identifier string.

        Args:
            value: Identifier in ``region:project:name`` form

        Returns:
            Parsed identifier

        Raises:
            InvalidInstanceError: If value does not have exactly three non-empty segments
        """
        if not isinstance(value, str):
            raise InvalidInstanceError(f"Instance identifier must be a string, got {value!r}")

        segments = value.split(INSTANCE_SEPARATOR)
        if len(segments) != 3:
            raise InvalidInstanceError(
                f"Instance identifier {value!r} must have the form region:project:name"
            )
        if not all(segments):
            raise InvalidInstanceError(
                f"Instance identifier {value!r} has an empty segment"
            )

        region, project, name = segments
        try:
            return cls(region=region, project=project, name=name)
        except ValueError as e:
            raise InvalidInstanceError(f"Invalid instance identifier {value!r}: {e}") from e

    @property
    def tls_server_name(self) -> str:
        """Identity carried by the remote certificate; it does not include the region."""
        return f"{self.project}{INSTANCE_SEPARATOR}{self.name}"

    def __str__(self) -> str:
        return INSTANCE_SEPARATOR.join((self.region, self.project, self.name))


class TLSIdentity(BaseModel):
    """TLS material used to secure a channel to an instance.

    The config source owns the canonical object; dialers work on copies made
    with ``with_server_name``.
    """

    model_config = ConfigDict(frozen=True)

    root_certificates: bytes | None = Field(default=None, description="PEM CA bundle")
    private_key: bytes | None = Field(default=None, description="PEM client key")
    certificate_chain: bytes | None = Field(default=None, description="PEM client cert")
    server_name: str | None = Field(
        default=None, description="Name checked against the server certificate"
    )

    def with_server_name(self, server_name: str) -> "TLSIdentity":
        """Return a copy of this identity verifying against server_name."""
        return self.model_copy(update={"server_name": server_name})

    def log_fields(self) -> dict[str, Any]:
        """Fields safe to log; key material is masked"""
        return sanitize_log_data(
            self.model_dump(exclude={"root_certificates"})
        )

    def __repr__(self) -> str:
        return (
            f"TLSIdentity(server_name={self.server_name!r}, "
            f"has_root_certificates={self.root_certificates is not None}, "
            f"has_client_certificate={self.certificate_chain is not None})"
        )


class ResolvedEndpoint(BaseModel):
    """Network address and TLS identity needed to dial an instance."""

    model_config = ConfigDict(frozen=True)

    instance: InstanceIdentifier
    address: str = Field(min_length=3, description="host:port to dial")
    tls_server_name: str = Field(min_length=1)
    tls: TLSIdentity


class Direction(str, Enum):
    """Direction of a pump within a tunnel."""

    LOCAL_TO_REMOTE = "local_to_remote"
    REMOTE_TO_LOCAL = "remote_to_local"


class TunnelResult(BaseModel):
    """Outcome of one tunnel: the first terminal error and where it came from."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    error: BaseException | None = Field(default=None)
    was_read_error: bool = Field(
        default=False, description="True if the error came from the reading side"
    )
    direction: Direction | None = Field(default=None)
    bytes_sent: int = Field(default=0, ge=0, description="Bytes forwarded to the remote")
    bytes_received: int = Field(
        default=0, ge=0, description="Bytes written to the local connection"
    )
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = Field(default=None)

    @property
    def clean(self) -> bool:
        """True if the tunnel ended because a peer closed its side without error."""
        return self.was_read_error and isinstance(self.error, TunnelClosed)

    @property
    def duration(self) -> float | None:
        """Tunnel lifetime in seconds, once finished"""
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def log_fields(self) -> dict[str, Any]:
        """Key/value pairs describing this result for structured logs"""
        return {
            "direction": self.direction.value if self.direction else None,
            "was_read_error": self.was_read_error,
            "clean": self.clean,
            "error": repr(self.error) if self.error is not None else None,
            "bytes_sent": self.bytes_sent,
            "bytes_received": self.bytes_received,
            "duration": self.duration,
        }
