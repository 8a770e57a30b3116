"""Redfish MCP -- MCP server for Redfish hardware-management endpoints.

Lets a tool-calling agent list Redfish-enabled servers, configured
statically or found through SSDP discovery, and fetch data from any
Redfish resource on them via the Model Context Protocol (MCP).
"""

from __future__ import annotations

__version__ = "0.1.0"

from .client import RedfishClient, filter_headers
from .config import RedfishMCPConfig, get_config, load_config_file
from .discovery import DiscoveryWorker, SSDPDiscovery, parse_al
from .exceptions import (
    RedfishAPIError,
    RedfishAuthError,
    RedfishConfigError,
    RedfishConnectionError,
    RedfishDiscoveryError,
    RedfishError,
    RequestCancelledError,
    is_retryable,
)
from .hosts import HostManager, parse_hosts_json
from .models import (
    AuthMethod,
    ClientConfig,
    DiscoveredHost,
    HostConfig,
    RedfishResponse,
    is_valid_service_root,
)
from .server import (
    execute,
    get_host_manager,
    get_resource_data,
    get_server_config,
    get_server_info,
    handle_tool_error,
    list_servers,
    mcp,
    parse_redfish_url,
)

__all__ = [
    "AuthMethod",
    "ClientConfig",
    "DiscoveredHost",
    "DiscoveryWorker",
    "HostConfig",
    "HostManager",
    "RedfishAPIError",
    "RedfishAuthError",
    "RedfishClient",
    "RedfishConfigError",
    "RedfishConnectionError",
    "RedfishDiscoveryError",
    "RedfishError",
    "RedfishMCPConfig",
    "RedfishResponse",
    "RequestCancelledError",
    "SSDPDiscovery",
    "execute",
    "filter_headers",
    "get_config",
    "get_host_manager",
    "get_resource_data",
    "get_server_config",
    "get_server_info",
    "handle_tool_error",
    "is_retryable",
    "is_valid_service_root",
    "list_servers",
    "load_config_file",
    "mcp",
    "parse_al",
    "parse_hosts_json",
    "parse_redfish_url",
]
