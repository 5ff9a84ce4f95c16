"""Endpoint resolution: instance identifier to dial address and TLS identity."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol

from .common.exceptions import ConfigurationError, ResolutionError
from .common.logging import get_logger
from .common.utils import host_of, join_host_port, validate_port
from .models import InstanceIdentifier, ResolvedEndpoint, TLSIdentity

logger = get_logger(__name__)


class ConfigSource(Protocol):
    """Certificate and address cache for instances.

    Both calls may block; implementations synchronize their own refreshes.
    """

    def cached_config(self, instance: str) -> tuple[str, TLSIdentity | None]:
        """Return the cached address and TLS identity, identity None if absent or stale."""
        ...

    def refresh_config(self, instance: str) -> tuple[str, TLSIdentity]:
        """Fetch a fresh address and TLS identity, raising on failure."""
        ...


class StaticConfigSource:
    """In-memory ConfigSource backed by a fixed mapping.

    An optional loader is called on refresh for instances with no entry,
    and its answer is cached.
    """

    def __init__(
        self,
        entries: Mapping[str, tuple[str, TLSIdentity]] | None = None,
        loader: Callable[[str], tuple[str, TLSIdentity]] | None = None,
    ):
        self._entries: dict[str, tuple[str, TLSIdentity]] = dict(entries or {})
        self._loader = loader
        self._lock = threading.Lock()

    @classmethod
    def from_files(
        cls,
        instance: str,
        address: str,
        root_certificates: str | Path,
        private_key: str | Path | None = None,
        certificate_chain: str | Path | None = None,
    ) -> StaticConfigSource:
        """Build a source for one instance from PEM files on disk.

        Raises:
            ConfigurationError: If a file cannot be read
        """

        def read(path: str | Path | None) -> bytes | None:
            if path is None:
                return None
            try:
                return Path(path).read_bytes()
            except OSError as e:
                raise ConfigurationError(f"Cannot read TLS file {path}: {e}") from e

        identity = TLSIdentity(
            root_certificates=read(root_certificates),
            private_key=read(private_key),
            certificate_chain=read(certificate_chain),
        )
        return cls({instance: (address, identity)})

    def set(self, instance: str, address: str, identity: TLSIdentity) -> None:
        """Add or replace the entry for an instance"""
        with self._lock:
            self._entries[instance] = (address, identity)

    def cached_config(self, instance: str) -> tuple[str, TLSIdentity | None]:
        with self._lock:
            entry = self._entries.get(instance)
        if entry is None:
            return "", None
        return entry

    def refresh_config(self, instance: str) -> tuple[str, TLSIdentity]:
        with self._lock:
            entry = self._entries.get(instance)
        if entry is not None:
            return entry
        if self._loader is None:
            raise ResolutionError(f"No configuration known for instance {instance}")

        entry = self._loader(instance)
        with self._lock:
            self._entries[instance] = entry
        return entry


class EndpointResolver:
    """Turns an instance identifier into a ResolvedEndpoint."""

    def __init__(self, config_source: ConfigSource):
        self.config_source = config_source

    def resolve(self, instance: str, port: int) -> ResolvedEndpoint:
        """Resolve an instance to the address and TLS identity to dial.

        The cached address's host is kept and its port replaced by ``port``.
        The TLS server name is the instance identifier without its region.

        Args:
            instance: Instance identifier, ``region:project:name``
            port: Remote RPC port

        Returns:
            Endpoint ready to be dialed

        Raises:
            InvalidInstanceError: If the identifier is malformed
            ResolutionError: If the address or TLS identity cannot be obtained
        """
        identifier = InstanceIdentifier.parse(instance)
        try:
            validate_port(port, "RPC port")
        except ValueError as e:
            raise ResolutionError(str(e)) from e

        address, identity = self._lookup(instance)

        host = host_of(address)
        if not host:
            raise ResolutionError(f"Config source returned no address for {instance}")

        server_name = identifier.tls_server_name
        endpoint = ResolvedEndpoint(
            instance=identifier,
            address=join_host_port(host, port),
            tls_server_name=server_name,
            tls=identity.with_server_name(server_name),
        )
        logger.debug(
            "Resolved instance",
            instance=instance,
            address=endpoint.address,
            tls_server_name=server_name,
        )
        return endpoint

    def _lookup(self, instance: str) -> tuple[str, TLSIdentity]:
        try:
            address, identity = self.config_source.cached_config(instance)
            if identity is None:
                logger.debug("No cached config, refreshing", instance=instance)
                address, identity = self.config_source.refresh_config(instance)
        except ResolutionError:
            raise
        except Exception as e:
            logger.error("Failed to obtain instance config", instance=instance, error=str(e))
            raise ResolutionError(f"Failed to obtain config for {instance}: {e}") from e

        if identity is None:
            raise ResolutionError(f"Config source returned no TLS identity for {instance}")
        return address, identity
