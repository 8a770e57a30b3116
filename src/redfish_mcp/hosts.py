"""Host registry for the Redfish MCP server.

``HostManager`` is the single source of truth for which Redfish hosts
exist.  It holds the statically configured hosts (loaded once) and the
most recent SSDP discovery result (replaced wholesale on every cycle),
and exposes a merged, de-duplicated view:

- every static host is included, and a static entry always wins;
- a discovered host is added only when no host with the same address is
  present, and contributes nothing but its address -- credentials, port
  and auth method come from the global defaults when a client is built.

Reads run concurrently; an update briefly excludes readers.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from pydantic import ValidationError

from .models import AuthMethod, ClientConfig, DiscoveredHost, HostConfig

DEFAULT_HOSTS_JSON = '[{"address": "127.0.0.1"}]'


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers block
    until it has finished.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def parse_hosts_json(raw: str) -> list[HostConfig]:
    """Parse and validate a JSON array of host objects.

    Raises:
        ValueError: If the JSON is malformed, not an array, or any entry
            fails validation.  The message names the offending index.
    """
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON in host list: {exc}") from exc
    if not isinstance(items, list):
        raise ValueError("host list must be a JSON array")

    hosts: list[HostConfig] = []
    for index, item in enumerate(items):
        try:
            hosts.append(HostConfig.model_validate(item))
        except ValidationError as exc:
            raise ValueError(f"invalid host configuration at index {index}: {exc}") from exc
    return hosts


class HostManager:
    """Static and discovered Redfish hosts behind a reader/writer lock.

    Args:
        static_hosts: Hosts from configuration.
        defaults: Global client defaults used by ``resolve`` for anything a
            host entry leaves empty (see ``RedfishMCPConfig.client_defaults``).
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        static_hosts: Sequence[HostConfig] = (),
        *,
        defaults: dict[str, Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._lock = ReadWriteLock()
        self._static_hosts: tuple[HostConfig, ...] = tuple(static_hosts)
        self._discovered_hosts: tuple[DiscoveredHost, ...] = ()
        self._defaults: dict[str, Any] = dict(defaults or {})
        self._logger.info("Loaded static hosts: count=%d", len(self._static_hosts))

    @classmethod
    def from_json(
        cls,
        raw: str | None,
        *,
        defaults: dict[str, Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> HostManager:
        """Build a registry from a ``REDFISH_HOSTS``-style JSON array.

        An empty value means the default host list.  A value that fails to
        parse is logged and replaced by the default single host
        ``127.0.0.1``; it never raises.
        """
        log = logger if logger is not None else logging.getLogger(__name__)
        try:
            hosts = parse_hosts_json(raw or DEFAULT_HOSTS_JSON)
        except ValueError as exc:
            log.error("Failed to parse host list, using default host: %s", exc)
            hosts = [HostConfig(address="127.0.0.1")]
        return cls(hosts, defaults=defaults, logger=logger)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_discovered_hosts(self, hosts: Sequence[DiscoveredHost]) -> None:
        """Replace the discovered host list with a new discovery result."""
        snapshot = tuple(hosts)
        with self._lock.write_locked():
            self._discovered_hosts = snapshot
        self._logger.info("Updated discovered hosts: count=%d", len(snapshot))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def static_hosts(self) -> list[HostConfig]:
        """Return the statically configured hosts."""
        with self._lock.read_locked():
            return list(self._static_hosts)

    @property
    def discovered_hosts(self) -> list[DiscoveredHost]:
        """Return the most recent discovery result."""
        with self._lock.read_locked():
            return list(self._discovered_hosts)

    def get_hosts(self) -> list[HostConfig]:
        """Return the merged host list, one entry per address.

        Static hosts come first and always win; discovered hosts follow
        as bare-address entries.  Callers must not rely on the order.
        """
        with self._lock.read_locked():
            static_hosts = self._static_hosts
            discovered_hosts = self._discovered_hosts

        merged: dict[str, HostConfig] = {}
        for host in static_hosts:
            merged.setdefault(host.address, host)
        for discovered in discovered_hosts:
            if discovered.address not in merged:
                merged[discovered.address] = HostConfig(address=discovered.address)
        return list(merged.values())

    def get_host_by_address(self, address: str) -> HostConfig | None:
        """Find a host in the merged view by address."""
        for host in self.get_hosts():
            if host.address == address:
                return host
        return None

    def get_addresses(self) -> list[str]:
        """Return the addresses of all hosts in the merged view."""
        return [host.address for host in self.get_hosts()]

    # ------------------------------------------------------------------
    # Client configuration
    # ------------------------------------------------------------------

    def build_client_config(self, host: HostConfig) -> ClientConfig:
        """Resolve a host entry against the global defaults.

        The host's port, username, password, auth method and CA certificate
        override the defaults when set; retry, timeout and TLS-verification
        settings always come from the defaults.
        """
        values: dict[str, Any] = dict(self._defaults)
        values["address"] = host.address
        if host.port:
            values["port"] = host.port
        if host.username:
            values["username"] = host.username
        if host.password:
            values["password"] = host.password
        if host.auth_method:
            values["auth_method"] = AuthMethod(host.auth_method)
        if host.tls_server_ca_cert:
            values["tls_server_ca_cert"] = host.tls_server_ca_cert
        return ClientConfig(**values)

    def resolve(self, address: str) -> ClientConfig | None:
        """Look up a host and return its resolved client configuration.

        Returns:
            The ``ClientConfig``, or ``None`` if no host has that address.
        """
        host = self.get_host_by_address(address)
        if host is None:
            return None
        return self.build_client_config(host)
