"""Configuration management for the Redfish MCP server.

Provides a Pydantic Settings-based configuration class that loads settings
from environment variables (with ``REDFISH_`` prefix, plus ``MCP_TRANSPORT``
and ``MCP_REDFISH_LOG_LEVEL``) and ``.env`` files.  When
``REDFISH_CONFIG_FILE`` names a JSON file, its values override the
environment.

All Redfish connection defaults, retry tuning, discovery settings and MCP
server settings are managed here.  A singleton-style ``get_config()``
factory function avoids re-reading the environment on every call.

Usage::

    from redfish_mcp.config import get_config

    config = get_config()
    print(config.port)           # 443
    print(config.auth_method)    # session
    print(config.log_level)      # INFO

To create the host registry from the config::

    from redfish_mcp.config import get_config

    host_manager = get_config().create_host_manager()
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import RedfishConfigError
from .hosts import DEFAULT_HOSTS_JSON, HostManager, parse_hosts_json
from .models import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_INITIAL_DELAY,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    AuthMethod,
    HostConfig,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "REDFISH_CONFIG_FILE"

# Valid Python logging level names (upper-cased for comparison)
_VALID_LOG_LEVELS: frozenset[str] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
)

_VALID_TRANSPORTS: frozenset[str] = frozenset({"stdio", "sse", "streamable-http"})

# Keys accepted from a REDFISH_CONFIG_FILE JSON document
_CONFIG_FILE_KEYS: frozenset[str] = frozenset(
    {
        "hosts",
        "port",
        "auth_method",
        "username",
        "password",
        "tls_server_ca_cert",
        "insecure_skip_verify",
        "discovery_enabled",
        "discovery_interval",
    }
)


class RedfishMCPConfig(BaseSettings):
    """Type-safe configuration for the Redfish MCP server.

    Loads values from environment variables and from a ``.env`` file if
    present.  Invalid values raise a ``ValidationError`` with a clear
    message; the server treats that as fatal at startup.

    Environment variables:
        REDFISH_HOSTS:                JSON array of host objects (default one host, 127.0.0.1).
        REDFISH_PORT:                 Default HTTPS port (default 443).
        REDFISH_AUTH_METHOD:          Default auth method, basic or session (default session).
        REDFISH_USERNAME:             Default username.
        REDFISH_PASSWORD:             Default password.
        REDFISH_SERVER_CA_CERT:       Default CA certificate path.
        REDFISH_INSECURE_SKIP_VERIFY: Skip TLS certificate verification (default false).
        REDFISH_DISCOVERY_ENABLED:    Run SSDP discovery in the background (default false).
        REDFISH_DISCOVERY_INTERVAL:   Seconds between discovery cycles (default 30).
        REDFISH_DISCOVERY_TIMEOUT:    Seconds to collect SSDP responses (default 5).
        REDFISH_MAX_RETRIES:          Retries per request after the first try (default 3).
        REDFISH_INITIAL_DELAY:        First backoff delay in seconds (default 1).
        REDFISH_MAX_DELAY:            Backoff delay cap in seconds (default 60).
        REDFISH_BACKOFF_FACTOR:       Backoff multiplier (default 2).
        REDFISH_JITTER:               Add random jitter to backoff delays (default false).
        REDFISH_TIMEOUT:              Per-request timeout in seconds (default 30).
        MCP_TRANSPORT:                stdio, sse or streamable-http (default stdio).
        MCP_REDFISH_LOG_LEVEL:        Logging level (default INFO).
    """

    model_config = SettingsConfigDict(
        env_prefix="REDFISH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Hosts and credentials
    # ------------------------------------------------------------------

    hosts: str = Field(
        default=DEFAULT_HOSTS_JSON,
        description="JSON array of host objects",
    )
    port: int = Field(
        default=443,
        ge=1,
        le=65535,
        description="Default Redfish HTTPS port",
    )
    auth_method: str = Field(
        default=AuthMethod.SESSION.value,
        description="Default authentication method: basic or session",
    )
    username: str = Field(default="", description="Default Redfish username")
    password: str = Field(default="", description="Default Redfish password")
    tls_server_ca_cert: str = Field(
        default="",
        validation_alias=AliasChoices("REDFISH_TLS_SERVER_CA_CERT", "REDFISH_SERVER_CA_CERT"),
        description="Default CA certificate path for server verification",
    )
    insecure_skip_verify: bool = Field(
        default=False,
        description="Skip TLS certificate verification",
    )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    discovery_enabled: bool = Field(default=False, description="Enable SSDP discovery")
    discovery_interval: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Seconds between discovery cycles",
    )
    discovery_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for SSDP responses",
    )

    # ------------------------------------------------------------------
    # Request retry tuning
    # ------------------------------------------------------------------

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, le=10)
    initial_delay: float = Field(default=DEFAULT_INITIAL_DELAY, ge=0)
    max_delay: float = Field(default=DEFAULT_MAX_DELAY, ge=0)
    backoff_factor: float = Field(default=DEFAULT_BACKOFF_FACTOR, ge=1.0)
    jitter: bool = False
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Per-request timeout in seconds")

    # ------------------------------------------------------------------
    # MCP server
    # ------------------------------------------------------------------

    transport: str = Field(
        default="stdio",
        validation_alias=AliasChoices("REDFISH_TRANSPORT", "MCP_TRANSPORT"),
        description="MCP transport: stdio, sse, streamable-http",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("REDFISH_LOG_LEVEL", "MCP_REDFISH_LOG_LEVEL"),
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("hosts")
    @classmethod
    def _validate_hosts(cls, value: str) -> str:
        """Validate that the host list parses; an empty value means the default."""
        value = value.strip() or DEFAULT_HOSTS_JSON
        parse_hosts_json(value)
        return value

    @field_validator("auth_method")
    @classmethod
    def _validate_auth_method(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {m.value for m in AuthMethod}:
            raise ValueError(
                f"REDFISH_AUTH_METHOD must be one of {sorted(m.value for m in AuthMethod)}. "
                f"Got: {value!r}"
            )
        return normalized

    @field_validator("transport")
    @classmethod
    def _validate_transport(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _VALID_TRANSPORTS:
            raise ValueError(
                f"MCP_TRANSPORT must be one of {sorted(_VALID_TRANSPORTS)}. Got: {value!r}"
            )
        return normalized

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        """Validate that the log level is a recognized Python logging level."""
        normalized = value.strip().upper()
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"MCP_REDFISH_LOG_LEVEL must be one of {sorted(_VALID_LOG_LEVELS)}. "
                f"Got: {value!r}"
            )
        return normalized

    @model_validator(mode="after")
    def _log_config_loaded(self) -> RedfishMCPConfig:
        """Log that configuration was successfully loaded (debug level)."""
        logger.debug(
            "Configuration loaded: port=%d, auth_method=%s, discovery_enabled=%s, transport=%s, log_level=%s",
            self.port,
            self.auth_method,
            self.discovery_enabled,
            self.transport,
            self.log_level,
        )
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def host_configs(self) -> list[HostConfig]:
        """Return the parsed static host list."""
        return parse_hosts_json(self.hosts)

    def client_defaults(self) -> dict[str, Any]:
        """Return the global defaults applied to every ``ClientConfig``."""
        return {
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "auth_method": AuthMethod(self.auth_method),
            "tls_server_ca_cert": self.tls_server_ca_cert,
            "insecure_skip_verify": self.insecure_skip_verify,
            "max_retries": self.max_retries,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "backoff_factor": self.backoff_factor,
            "jitter": self.jitter,
            "timeout": self.timeout,
        }

    # ------------------------------------------------------------------
    # Factory method
    # ------------------------------------------------------------------

    def create_host_manager(self, **overrides: Any) -> HostManager:
        """Create a ``HostManager`` seeded with the static hosts and defaults.

        Any keyword arguments are forwarded to ``HostManager.from_json``.
        """
        kwargs: dict[str, Any] = {"defaults": self.client_defaults()}
        kwargs.update(overrides)
        return HostManager.from_json(self.hosts, **kwargs)


def load_config_file(path: str) -> dict[str, Any]:
    """Read a JSON config file and return its values as config overrides.

    Args:
        path: Path to a JSON object with any of the keys ``hosts``,
            ``port``, ``auth_method``, ``username``, ``password``,
            ``tls_server_ca_cert``, ``insecure_skip_verify``,
            ``discovery_enabled`` and ``discovery_interval``.

    Returns:
        A dict of ``RedfishMCPConfig`` field overrides.  ``hosts`` is
        re-serialized to a JSON string.

    Raises:
        RedfishConfigError: If the file cannot be read or is not a JSON object.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise RedfishConfigError(
            message=f"failed to read config file {path}: {exc}",
            details={"path": path},
        ) from exc
    except json.JSONDecodeError as exc:
        raise RedfishConfigError(
            message=f"invalid JSON in config file {path}: {exc}",
            details={"path": path},
        ) from exc

    if not isinstance(data, dict):
        raise RedfishConfigError(
            message=f"config file {path} must contain a JSON object",
            details={"path": path},
        )

    overrides = {key: value for key, value in data.items() if key in _CONFIG_FILE_KEYS}
    if "hosts" in overrides and not isinstance(overrides["hosts"], str):
        overrides["hosts"] = json.dumps(overrides["hosts"])
    logger.info("Loaded config file %s: keys=%s", path, sorted(overrides))
    return overrides


# ------------------------------------------------------------------
# Singleton / factory
# ------------------------------------------------------------------

_config_instance: RedfishMCPConfig | None = None


def get_config(**overrides: Any) -> RedfishMCPConfig:
    """Return the global ``RedfishMCPConfig`` singleton.

    On the first call the config is loaded from environment variables, the
    ``.env`` file and, when ``REDFISH_CONFIG_FILE`` is set, that JSON file.
    Subsequent calls return the cached instance.

    Args:
        **overrides: Optional field overrides passed to the
            ``RedfishMCPConfig`` constructor on first call only.  They take
            precedence over the config file.

    Returns:
        The global ``RedfishMCPConfig`` instance.

    Raises:
        pydantic.ValidationError: If validation fails.
        RedfishConfigError: If the config file is unreadable or invalid.
    """
    global _config_instance
    if _config_instance is None:
        values: dict[str, Any] = {}
        config_file = os.environ.get(CONFIG_FILE_ENV, "")
        if config_file:
            values.update(load_config_file(config_file))
        values.update(overrides)
        _config_instance = RedfishMCPConfig(**values)
        logger.info(
            "Configuration initialized: hosts=%d, transport=%s",
            len(_config_instance.host_configs),
            _config_instance.transport,
        )
    return _config_instance


def _reset_config() -> None:
    """Reset the cached configuration singleton.

    Intended for test teardown so that each test can start with a clean
    configuration state.  Should not be called in production code.
    """
    global _config_instance
    _config_instance = None
    logger.debug("Configuration singleton reset")
