"""FastMCP server for the Redfish MCP server.

Entry point for the MCP server that exposes Redfish data via the Model
Context Protocol.  Initializes the FastMCP server instance, loads
configuration, builds the host registry, starts background SSDP discovery
when enabled, and registers tools using ``@mcp.tool()`` decorators.

Every ``get_resource_data`` call is independent: it resolves the address
through the registry, builds its own ``RedfishClient``, logs in, issues one
GET and closes the client.

Usage::

    # Via entry point
    redfish-mcp --config /etc/redfish-mcp.json

    # Via module
    python -m redfish_mcp.server
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading
from typing import Any
from urllib.parse import urlsplit

from fastmcp import FastMCP
from pydantic import ValidationError

from .client import RedfishClient
from .config import CONFIG_FILE_ENV, RedfishMCPConfig, get_config
from .discovery import DiscoveryWorker, SSDPDiscovery
from .exceptions import RedfishConfigError, RedfishError
from .hosts import HostManager
from .models import ClientConfig, RedfishResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Server instance
# ---------------------------------------------------------------------------

mcp: FastMCP = FastMCP(
    "redfish-mcp",
    instructions=(
        "Redfish MCP server -- lists the Redfish-enabled servers that can be "
        "accessed, configured statically or found through SSDP discovery, and "
        "fetches data from any Redfish resource on them."
    ),
)

# ---------------------------------------------------------------------------
# Server state -- populated during startup
# ---------------------------------------------------------------------------

_config: RedfishMCPConfig | None = None
_host_manager: HostManager | None = None
_discovery_worker: DiscoveryWorker | None = None


def _init_server() -> RedfishMCPConfig:
    """Load configuration, build the host registry and start discovery.

    Called once at server startup.

    Returns:
        The loaded configuration.

    Raises:
        pydantic.ValidationError: If the configuration is invalid.
        RedfishConfigError: If the config file cannot be loaded.
    """
    global _config, _host_manager, _discovery_worker

    config = get_config()
    _config = config

    # Configure logging level from the loaded config
    log_level = getattr(logging, config.log_level, logging.INFO)
    logging.getLogger("redfish_mcp").setLevel(log_level)

    _host_manager = config.create_host_manager(logger=logger.getChild("hosts"))

    if config.discovery_enabled:
        discovery = SSDPDiscovery(
            timeout=config.discovery_timeout,
            logger=logger.getChild("discovery"),
        )
        _discovery_worker = DiscoveryWorker(
            discovery,
            _host_manager.update_discovered_hosts,
            interval=config.discovery_interval,
            logger=logger.getChild("discovery"),
        )
        _discovery_worker.start()

    return config


def _shutdown_server() -> None:
    """Stop background discovery, if running."""
    global _discovery_worker
    if _discovery_worker is not None:
        _discovery_worker.stop(timeout=5)
        _discovery_worker = None


def get_host_manager() -> HostManager:
    """Return the server-wide ``HostManager``.

    Raises:
        RedfishError: If the server has not been initialized.
    """
    if _host_manager is None:
        raise RedfishError(
            message="Host registry not initialized -- check configuration",
            error_code="SERVER_NOT_INITIALIZED",
        )
    return _host_manager


def get_server_config() -> RedfishMCPConfig | None:
    """Return the server-wide ``RedfishMCPConfig``, or None if unavailable."""
    return _config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def handle_tool_error(exc: Exception) -> dict[str, Any]:
    """Convert an exception into a structured MCP tool error response.

    ``RedfishError`` subclasses are formatted with ``to_dict()``.
    ``ValueError`` (bad tool input) becomes ``INVALID_PARAMETER``.  Any
    other exception yields a generic error response.
    """
    if isinstance(exc, RedfishError):
        return exc.to_dict()

    if isinstance(exc, ValueError):
        return {
            "error": str(exc),
            "error_code": "INVALID_PARAMETER",
        }

    logger.exception("Unexpected error in tool execution: %s", exc)
    return {
        "error": str(exc),
        "error_code": "UNEXPECTED_ERROR",
    }


def parse_redfish_url(url: str) -> tuple[str, int | None, str]:
    """Split a Redfish resource URL into address, port and resource path.

    Args:
        url: A URL such as ``https://10.0.0.5/redfish/v1/Systems/1``.

    Returns:
        ``(address, port, resource_path)``; ``port`` is ``None`` when the
        URL does not name one.  The address keeps the case used in the URL
        and IPv6 literals lose their brackets.  The query string, if any,
        stays on the path.

    Raises:
        ValueError: If the URL is not ``https`` or has no host or path.
    """
    parsed = urlsplit(url.strip())
    if parsed.scheme != "https":
        raise ValueError(f"URL must use HTTPS: {url!r}")
    address = _netloc_host(parsed.netloc)
    if not address:
        raise ValueError(f"empty server address in URL: {url!r}")
    if not parsed.path:
        raise ValueError(f"missing resource path in URL: {url!r}")

    resource_path = parsed.path
    if parsed.query:
        resource_path = f"{resource_path}?{parsed.query}"
    return address, parsed.port, resource_path


def _netloc_host(netloc: str) -> str:
    # urlsplit().hostname lower-cases; registry lookups are exact
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        return host[1:].partition("]")[0]
    return host.partition(":")[0]


def execute(
    client_config: ClientConfig,
    resource_path: str,
    *,
    cancel_event: threading.Event | None = None,
) -> RedfishResponse:
    """Log in, GET one resource with headers, and close the client.

    The client is closed whether or not the request succeeds.

    Raises:
        RedfishError: On login or request failure.
    """
    client = RedfishClient(
        client_config,
        logger=logger.getChild("client"),
        cancel_event=cancel_event,
    )
    try:
        client.login()
        return client.get_with_headers(resource_path)
    finally:
        client.close()


def _fetch_resource(url: str, cancel_event: threading.Event) -> dict[str, Any]:
    try:
        address, port, resource_path = parse_redfish_url(url)
        host_manager = get_host_manager()
        client_config = host_manager.resolve(address)
        if client_config is None:
            return {
                "error": f"server {address} not found in configuration",
                "error_code": "HOST_NOT_FOUND",
            }
        if port is not None and port != client_config.port:
            client_config = client_config.model_copy(update={"port": port})

        response = execute(client_config, resource_path, cancel_event=cancel_event)
    except Exception as exc:
        return handle_tool_error(exc)

    return {
        "headers": response.headers,
        "data": response.data,
    }


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_servers() -> dict[str, Any]:
    """List all Redfish servers that can be accessed.

    Includes statically configured servers and, when discovery is enabled,
    servers found on the local network.

    Returns:
        A dict with a ``servers`` list of addresses.
    """
    try:
        addresses = get_host_manager().get_addresses()
    except RedfishError as exc:
        return handle_tool_error(exc)

    logger.info("Handling list_servers request: servers=%d", len(addresses))
    return {"servers": addresses}


@mcp.tool()
async def get_resource_data(url: str) -> dict[str, Any]:
    """Fetch data from a specific Redfish resource.

    Args:
        url: Full Redfish resource URL, e.g.
            ``https://10.0.0.5/redfish/v1/Systems/1``.  The host must be one
            of the servers returned by ``list_servers``.

    Returns:
        A dict with ``headers`` (Allow, Content-Type, Content-Encoding,
        ETag, Link when present) and ``data`` (the decoded JSON resource),
        or ``error`` and ``error_code`` on failure.
    """
    logger.info("Handling get_resource_data request: url=%s", url)
    cancel_event = threading.Event()
    try:
        return await asyncio.to_thread(_fetch_resource, url, cancel_event)
    except asyncio.CancelledError:
        cancel_event.set()
        raise


@mcp.tool()
def get_server_info() -> dict[str, Any]:
    """Return server metadata and configuration status.

    Provides information about the running server instance including the
    server name, version, transport, number of known hosts and whether
    discovery is running.  Credentials are never included.

    Returns:
        A dict with server name, version, configuration status, host counts
        and discovery state.
    """
    from . import __version__

    info: dict[str, Any] = {
        "server_name": "redfish-mcp",
        "version": __version__,
        "status": "running",
    }

    if _config is not None:
        info["config_loaded"] = True
        info["transport"] = _config.transport
        info["log_level"] = _config.log_level
        info["default_port"] = _config.port
        info["auth_method"] = _config.auth_method
        info["discovery_enabled"] = _config.discovery_enabled
    else:
        info["config_loaded"] = False

    if _host_manager is not None:
        info["static_hosts"] = len(_host_manager.static_hosts)
        info["discovered_hosts"] = len(_host_manager.discovered_hosts)
        info["total_hosts"] = len(_host_manager.get_hosts())

    info["discovery_running"] = _discovery_worker is not None and _discovery_worker.running

    return info


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Start the Redfish MCP server.

    Parses ``--config``, initializes configuration and the host registry,
    starts discovery when enabled, and runs the FastMCP server on the
    configured transport.  Exits with status 1 on invalid configuration.
    """
    parser = argparse.ArgumentParser(prog="redfish-mcp", description="Redfish MCP server")
    parser.add_argument("--config", default="", help="Path to Redfish config JSON file")
    args = parser.parse_args(argv)

    if args.config:
        os.environ[CONFIG_FILE_ENV] = args.config

    # Set up root logging for the package
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting redfish-mcp server")

    try:
        config = _init_server()
    except (ValidationError, RedfishConfigError) as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    logger.info(
        "Server initialized: hosts=%d, transport=%s, discovery_enabled=%s",
        len(config.host_configs),
        config.transport,
        config.discovery_enabled,
    )

    try:
        mcp.run(transport=config.transport)
    finally:
        _shutdown_server()
        logger.info("redfish-mcp server stopped")


if __name__ == "__main__":
    main()
