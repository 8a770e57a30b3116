"""Tests for the Pydantic v2 models of the device access layer.

Tests cover:
- HostConfig validation of address, port and auth method
- ClientConfig defaults, immutability and base URL
- Service root URI validation and DiscoveredHost
- RedfishResponse defaults
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from redfish_mcp.models import (
    AuthMethod,
    ClientConfig,
    DiscoveredHost,
    HostConfig,
    RedfishResponse,
    is_valid_service_root,
)

# ---------------------------------------------------------------------------
# HostConfig
# ---------------------------------------------------------------------------


class TestHostConfig:
    """Tests for HostConfig."""

    def test_minimal(self) -> None:
        host = HostConfig(address="10.0.0.5")
        assert host.address == "10.0.0.5"
        assert host.port == 0
        assert host.username == ""
        assert host.auth_method == ""
        assert host.tls_server_ca_cert == ""

    def test_full(self) -> None:
        host = HostConfig.model_validate(
            {
                "address": "bmc.example.com",
                "port": 8443,
                "username": "admin",
                "password": "secret",
                "auth_method": "basic",
                "tls_server_ca_cert": "/etc/ssl/bmc-ca.pem",
            }
        )
        assert host.port == 8443
        assert host.auth_method == "basic"
        assert host.tls_server_ca_cert == "/etc/ssl/bmc-ca.pem"

    def test_empty_address_rejected(self) -> None:
        with pytest.raises(ValidationError, match="address cannot be empty"):
            HostConfig(address="   ")

    def test_missing_address_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HostConfig.model_validate({"port": 443})

    @pytest.mark.parametrize("port", [-1, 65536, 100000])
    def test_port_out_of_range(self, port: int) -> None:
        with pytest.raises(ValidationError, match="port must be between"):
            HostConfig(address="10.0.0.5", port=port)

    @pytest.mark.parametrize("port", [0, 1, 443, 65535])
    def test_port_in_range(self, port: int) -> None:
        assert HostConfig(address="10.0.0.5", port=port).port == port

    def test_invalid_auth_method(self) -> None:
        with pytest.raises(ValidationError, match="invalid auth_method"):
            HostConfig(address="10.0.0.5", auth_method="kerberos")

    def test_unknown_keys_ignored(self) -> None:
        host = HostConfig.model_validate({"address": "10.0.0.5", "rack": "A1"})
        assert not hasattr(host, "rack")


# ---------------------------------------------------------------------------
# ClientConfig
# ---------------------------------------------------------------------------


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_defaults(self) -> None:
        config = ClientConfig(address="10.0.0.5")
        assert config.port == 443
        assert config.auth_method is AuthMethod.SESSION
        assert config.insecure_skip_verify is False
        assert config.max_retries == 3
        assert config.initial_delay == 1.0
        assert config.max_delay == 60.0
        assert config.backoff_factor == 2.0
        assert config.jitter is False
        assert config.timeout == 30.0

    def test_base_url(self) -> None:
        config = ClientConfig(address="bmc.example.com", port=8443)
        assert config.base_url == "https://bmc.example.com:8443"

    def test_base_url_ipv6(self) -> None:
        config = ClientConfig(address="fe80::1")
        assert config.base_url == "https://[fe80::1]:443"

    def test_base_url_bracketed_ipv6_unchanged(self) -> None:
        config = ClientConfig(address="[fe80::1]", port=8443)
        assert config.base_url == "https://[fe80::1]:8443"

    def test_is_frozen(self) -> None:
        config = ClientConfig(address="10.0.0.5")
        with pytest.raises(ValidationError):
            config.port = 8443  # type: ignore[misc]

    def test_auth_method_from_string(self) -> None:
        assert ClientConfig(address="h", auth_method="basic").auth_method is AuthMethod.BASIC

    def test_empty_address_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(address="")

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(address="h", max_retries=-1)


# ---------------------------------------------------------------------------
# Service root validation
# ---------------------------------------------------------------------------


class TestServiceRoot:
    """Tests for is_valid_service_root and DiscoveredHost."""

    @pytest.mark.parametrize(
        "uri",
        [
            "https://10.0.0.9/redfish/v1",
            "https://10.0.0.9/redfish/v1/",
            "https://bmc.example.com:8443/redfish/v1/",
        ],
    )
    def test_valid(self, uri: str) -> None:
        assert is_valid_service_root(uri) is True

    @pytest.mark.parametrize(
        "uri",
        [
            "http://10.0.0.9/redfish/v1",
            "https:///redfish/v1",
            "https://10.0.0.9/redfish/v1/Systems",
            "https://10.0.0.9/redfish/v2",
            "https://10.0.0.9/redfish",
            "https://10.0.0.9/redfish/v1?x=1",
            "https://10.0.0.9/",
            "not a uri",
            "",
        ],
    )
    def test_invalid(self, uri: str) -> None:
        assert is_valid_service_root(uri) is False

    def test_discovered_host(self) -> None:
        host = DiscoveredHost(address="10.0.0.9", service_root="https://10.0.0.9/redfish/v1/")
        assert host.address == "10.0.0.9"

    def test_discovered_host_rejects_bad_root(self) -> None:
        with pytest.raises(ValidationError):
            DiscoveredHost(address="10.0.0.9", service_root="http://10.0.0.9/redfish/v1")


class TestRedfishResponse:
    """Tests for RedfishResponse."""

    def test_defaults(self) -> None:
        response = RedfishResponse(status_code=204)
        assert response.headers == {}
        assert response.data == ""
