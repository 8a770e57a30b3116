"""Pydantic v2 models for the Redfish MCP device access layer.

Defines the value types shared by the protocol client, the SSDP discovery
engine and the host registry:

- ``HostConfig`` -- one entry of the ``REDFISH_HOSTS`` JSON array, exactly as
  configured (empty fields mean "use the global default").
- ``ClientConfig`` -- fully resolved parameters for one ``RedfishClient``.
- ``DiscoveredHost`` -- an endpoint found through SSDP.
- ``RedfishResponse`` -- the result of one successful request.

Service root validation
-----------------------
A discovered endpoint is only accepted when its ``AL`` URI uses ``https``,
names a host, and its path is exactly ``/redfish/v1`` (trailing slash
optional).  ``is_valid_service_root`` implements that check and is shared
by the discovery engine and the ``DiscoveredHost`` validator.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PORT = 443
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0
DEFAULT_BACKOFF_FACTOR = 2.0

_SERVICE_ROOT_PATH = re.compile(r"^/redfish/v1/?$")


class AuthMethod(str, Enum):
    """Redfish authentication methods."""

    BASIC = "basic"
    SESSION = "session"


def is_valid_service_root(uri: str) -> bool:
    """Check that a URI points at a Redfish service root.

    Args:
        uri: The URI to check, typically an SSDP ``AL`` header value.

    Returns:
        ``True`` if the scheme is ``https``, the host is non-empty, the path
        is ``/redfish/v1`` or ``/redfish/v1/`` and there is no query string.
    """
    try:
        parsed = urlsplit(uri)
    except ValueError:
        return False
    if parsed.scheme != "https":
        return False
    if not parsed.hostname:
        return False
    if parsed.query or parsed.fragment:
        return False
    return bool(_SERVICE_ROOT_PATH.match(parsed.path))


# ---------------------------------------------------------------------------
# HostConfig -- one configured host
# ---------------------------------------------------------------------------


class HostConfig(BaseModel):
    """Reachability and credentials for one Redfish host, as configured.

    Only ``address`` is required.  A ``port`` of ``0`` and empty strings for
    the other fields mean the global default applies when a client is built.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="ignore",
    )

    address: str = Field(
        ...,
        description="Hostname or IP address of the Redfish service.",
    )
    port: int = Field(
        default=0,
        description="HTTPS port; 0 means use the global default port.",
    )
    username: str = Field(default="", description="Username override.")
    password: str = Field(default="", description="Password override.")
    auth_method: str = Field(
        default="",
        description="Authentication method override: 'basic' or 'session'.",
    )
    tls_server_ca_cert: str = Field(
        default="",
        description="Path to a CA certificate bundle used to verify the host.",
    )

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        if not value:
            raise ValueError("host address cannot be empty")
        return value

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if value != 0 and not 1 <= value <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got: {value}")
        return value

    @field_validator("auth_method")
    @classmethod
    def _validate_auth_method(cls, value: str) -> str:
        if value and value not in {m.value for m in AuthMethod}:
            raise ValueError(
                f"invalid auth_method: {value}. Must be one of: "
                f"{AuthMethod.BASIC.value}, {AuthMethod.SESSION.value}"
            )
        return value


# ---------------------------------------------------------------------------
# ClientConfig -- resolved parameters for one client
# ---------------------------------------------------------------------------


class ClientConfig(BaseModel):
    """Fully resolved parameters for one ``RedfishClient`` instance.

    Built by ``HostManager.resolve`` from a ``HostConfig`` plus the global
    defaults.  Immutable; no further fallback is applied after construction.
    """

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., min_length=1)
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    username: str = ""
    password: str = ""
    auth_method: AuthMethod = AuthMethod.SESSION
    tls_server_ca_cert: str = ""
    insecure_skip_verify: bool = False
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    initial_delay: float = Field(default=DEFAULT_INITIAL_DELAY, ge=0)
    max_delay: float = Field(default=DEFAULT_MAX_DELAY, ge=0)
    backoff_factor: float = Field(default=DEFAULT_BACKOFF_FACTOR, ge=1.0)
    jitter: bool = False
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    @property
    def base_url(self) -> str:
        """Return ``https://address:port`` for this client.

        IPv6 literals are wrapped in brackets.
        """
        host = self.address
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        return f"https://{host}:{self.port}"


# ---------------------------------------------------------------------------
# DiscoveredHost -- SSDP result
# ---------------------------------------------------------------------------


class DiscoveredHost(BaseModel):
    """A Redfish endpoint found through SSDP discovery."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="Source IP of the SSDP response.")
    service_root: str = Field(..., description="Validated AL URI of the service root.")

    @field_validator("service_root")
    @classmethod
    def _validate_service_root(cls, value: str) -> str:
        if not is_valid_service_root(value):
            raise ValueError(f"not a Redfish service root URI: {value!r}")
        return value


# ---------------------------------------------------------------------------
# RedfishResponse -- one request result
# ---------------------------------------------------------------------------


class RedfishResponse(BaseModel):
    """The result of one successful Redfish request.

    ``data`` is the decoded JSON body, or the raw text when the body is not
    valid JSON (``""`` for an empty body).
    """

    status_code: int
    headers: dict[str, list[str]] = Field(default_factory=dict)
    data: Any = ""
