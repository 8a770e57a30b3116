"""SSDP discovery of Redfish services on the local network.

Provides ``SSDPDiscovery``, which multicasts one M-SEARCH query for the
Redfish service type and collects the responses that arrive within a
bounded time window, and ``DiscoveryWorker``, the background thread that
repeats discovery periodically and hands each result to a callback (the
host registry).

Every response must carry an ``AL`` header whose URI is an ``https``
Redfish service root (``/redfish/v1`` with an optional trailing slash).
Responses that fail the check are logged and dropped; a single malformed
response never aborts discovery of the others.

Usage::

    from redfish_mcp.discovery import SSDPDiscovery

    hosts = SSDPDiscovery(timeout=5).discover()
    for host in hosts:
        print(host.address, host.service_root)
"""

from __future__ import annotations

import logging
import re
import socket
import threading
import time
from collections.abc import Callable

from .exceptions import RedfishDiscoveryError
from .models import DiscoveredHost, is_valid_service_root

SSDP_ADDR = "239.255.255.250"
SSDP_PORT = 1900
SSDP_MX = 2
SSDP_ST = "urn:dmtf-org:service:redfish-rest:1"

DEFAULT_TIMEOUT = 5.0
DEFAULT_BUFFER_SIZE = 1024

# Multicast TTL for the M-SEARCH datagram
_MULTICAST_TTL = 2

_AL_HEADER = re.compile(r"^AL:\s*(.+)$", re.IGNORECASE)


def build_msearch() -> bytes:
    """Return the M-SEARCH datagram for the Redfish service type."""
    message = (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_ADDR}:{SSDP_PORT}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {SSDP_MX}\r\n"
        f"ST: {SSDP_ST}\r\n"
        "\r\n"
    )
    return message.encode("ascii")


def parse_al(response: str) -> str:
    """Extract the ``AL`` header value from an SSDP response.

    Header names are matched case-insensitively; the first ``AL`` line
    wins.

    Returns:
        The stripped header value, or ``""`` if there is none.
    """
    for line in response.split("\n"):
        match = _AL_HEADER.match(line.strip())
        if match:
            return match.group(1).strip()
    return ""


class SSDPDiscovery:
    """Finds Redfish services with a single SSDP M-SEARCH.

    Args:
        timeout: Seconds to wait for responses after sending the query.
        buffer_size: Maximum size of one response datagram; longer
            datagrams are truncated.
        logger: Logger to use instead of the module logger.
        socket_factory: Callable returning a new UDP socket.  Tests pass a
            factory that returns a fake socket.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        logger: logging.Logger | None = None,
        socket_factory: Callable[[], socket.socket] | None = None,
    ) -> None:
        self._timeout = timeout
        self._buffer_size = buffer_size
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._socket_factory = socket_factory or _udp_socket

    @property
    def timeout(self) -> float:
        """Return the response collection window in seconds."""
        return self._timeout

    def discover(self) -> list[DiscoveredHost]:
        """Send an M-SEARCH and collect valid responses until the timeout.

        Returns:
            The discovered hosts, in arrival order.  An empty list means no
            Redfish service answered.

        Raises:
            RedfishDiscoveryError: If the socket cannot be created or the
                query cannot be sent.
        """
        self._logger.info("Starting SSDP discovery")

        try:
            sock = self._socket_factory()
        except OSError as exc:
            raise RedfishDiscoveryError(
                message=f"failed to create UDP socket: {exc}",
                details={"original_error": str(exc)},
            ) from exc

        with sock:
            try:
                sock.sendto(build_msearch(), (SSDP_ADDR, SSDP_PORT))
            except OSError as exc:
                raise RedfishDiscoveryError(
                    message=f"failed to send M-SEARCH: {exc}",
                    details={"original_error": str(exc)},
                ) from exc

            self._logger.info("SSDP M-SEARCH sent, waiting for responses")
            hosts = self._collect(sock)

        self._logger.info("SSDP discovery completed: hosts_found=%d", len(hosts))
        return hosts

    def _collect(self, sock: socket.socket) -> list[DiscoveredHost]:
        hosts: list[DiscoveredHost] = []
        deadline = time.monotonic() + self._timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._logger.info("SSDP discovery timeout reached")
                break
            sock.settimeout(remaining)
            try:
                data, addr = sock.recvfrom(self._buffer_size)
            except socket.timeout:
                self._logger.info("SSDP discovery timeout reached")
                break
            except OSError as exc:
                self._logger.warning("Error reading SSDP response: %s", exc)
                continue

            host = self._parse_response(data, addr[0])
            if host is not None:
                hosts.append(host)
                self._logger.info(
                    "Discovered Redfish endpoint: address=%s, service_root=%s",
                    host.address,
                    host.service_root,
                )

        return hosts

    def _parse_response(self, data: bytes, address: str) -> DiscoveredHost | None:
        response = data.decode("utf-8", errors="replace")
        al_uri = parse_al(response)
        if not al_uri:
            self._logger.debug("SSDP response from %s has no AL header", address)
            return None
        if not is_valid_service_root(al_uri):
            self._logger.debug("SSDP response from %s rejected: invalid service root %r", address, al_uri)
            return None
        return DiscoveredHost(address=address, service_root=al_uri)


def _udp_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, _MULTICAST_TTL)
    return sock


# ---------------------------------------------------------------------------
# Background worker
# ---------------------------------------------------------------------------


class DiscoveryWorker:
    """Runs SSDP discovery periodically on a daemon thread.

    Each successful cycle's result is passed to ``on_discovered``.  A
    failed cycle is logged and the worker keeps running.

    Args:
        discovery: The discovery engine to run.
        on_discovered: Callback receiving each cycle's host list.
        interval: Seconds between the start of one cycle and the next.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        discovery: SSDPDiscovery,
        on_discovered: Callable[[list[DiscoveredHost]], None],
        interval: float,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._discovery = discovery
        self._on_discovered = on_discovered
        self._interval = interval
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        """Return whether the worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread.  Calling it again while running is a no-op."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="redfish-discovery",
            daemon=True,
        )
        self._thread.start()
        self._logger.info("Discovery worker started: interval=%ss", self._interval)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the worker to stop and wait for the thread to exit."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._logger.info("Discovery worker stopped")

    def run_once(self) -> list[DiscoveredHost] | None:
        """Run one discovery cycle.

        Returns:
            The discovered hosts, or ``None`` if the cycle failed.
        """
        try:
            hosts = self._discovery.discover()
        except RedfishDiscoveryError as exc:
            self._logger.error("Discovery cycle failed: %s", exc.message)
            return None
        self._on_discovered(hosts)
        return hosts

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                self._logger.exception("Unexpected error in discovery cycle")
            self._stop.wait(self._interval)
