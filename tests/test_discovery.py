"""Tests for SSDP discovery and the background discovery worker.

The UDP socket is replaced with a ``MagicMock`` through ``socket_factory``
so the M-SEARCH datagram and response parsing can be checked without
network access.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any
from unittest.mock import MagicMock

import pytest

from redfish_mcp.discovery import (
    SSDP_ADDR,
    SSDP_PORT,
    DiscoveryWorker,
    SSDPDiscovery,
    build_msearch,
    parse_al,
)
from redfish_mcp.exceptions import RedfishDiscoveryError
from redfish_mcp.models import DiscoveredHost

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ssdp_response(al: str | None, header: str = "AL") -> bytes:
    lines = [
        "HTTP/1.1 200 OK",
        "CACHE-CONTROL: max-age=1800",
        "ST: urn:dmtf-org:service:redfish-rest:1",
        "USN: uuid:4c4c4544-0037-5910-8058-b8c04f4e3732::urn:dmtf-org:service:redfish-rest:1",
    ]
    if al is not None:
        lines.append(f"{header}: {al}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def _fake_socket(*responses: Any) -> MagicMock:
    """Return a socket whose ``recvfrom`` yields ``responses`` then times out."""
    sock = MagicMock(spec=socket.socket)
    sock.__enter__.return_value = sock
    sock.recvfrom.side_effect = [*responses, socket.timeout()]
    return sock


def _discovery(sock: MagicMock, timeout: float = 5.0) -> SSDPDiscovery:
    return SSDPDiscovery(timeout=timeout, socket_factory=lambda: sock)


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


class TestMSearch:
    """Tests for the M-SEARCH datagram."""

    def test_exact_bytes(self) -> None:
        assert build_msearch() == (
            b"M-SEARCH * HTTP/1.1\r\n"
            b"HOST: 239.255.255.250:1900\r\n"
            b'MAN: "ssdp:discover"\r\n'
            b"MX: 2\r\n"
            b"ST: urn:dmtf-org:service:redfish-rest:1\r\n"
            b"\r\n"
        )


class TestParseAl:
    """Tests for AL header extraction."""

    def test_uppercase(self) -> None:
        assert parse_al(_ssdp_response("https://10.0.0.9/redfish/v1/").decode()) == "https://10.0.0.9/redfish/v1/"

    def test_lowercase_header(self) -> None:
        raw = _ssdp_response("https://10.0.0.9/redfish/v1", header="al").decode()
        assert parse_al(raw) == "https://10.0.0.9/redfish/v1"

    def test_missing(self) -> None:
        assert parse_al(_ssdp_response(None).decode()) == ""

    def test_does_not_match_other_headers(self) -> None:
        assert parse_al("HTTP/1.1 200 OK\r\nALLOW: GET\r\n\r\n") == ""

    def test_first_al_wins(self) -> None:
        raw = "HTTP/1.1 200 OK\r\nAL: https://a/redfish/v1\r\nAL: https://b/redfish/v1\r\n\r\n"
        assert parse_al(raw) == "https://a/redfish/v1"


# ---------------------------------------------------------------------------
# SSDPDiscovery
# ---------------------------------------------------------------------------


class TestSSDPDiscovery:
    """Tests for SSDPDiscovery.discover."""

    def test_sends_msearch_to_multicast_group(self) -> None:
        sock = _fake_socket()
        _discovery(sock).discover()
        sock.sendto.assert_called_once_with(build_msearch(), (SSDP_ADDR, SSDP_PORT))
        sock.__exit__.assert_called_once()

    def test_collects_valid_responses(self) -> None:
        sock = _fake_socket(
            (_ssdp_response("https://10.0.0.9/redfish/v1/"), ("10.0.0.9", 1900)),
            (_ssdp_response("https://10.0.0.10/redfish/v1"), ("10.0.0.10", 1900)),
        )
        hosts = _discovery(sock).discover()
        assert hosts == [
            DiscoveredHost(address="10.0.0.9", service_root="https://10.0.0.9/redfish/v1/"),
            DiscoveredHost(address="10.0.0.10", service_root="https://10.0.0.10/redfish/v1"),
        ]

    def test_address_is_response_source(self) -> None:
        sock = _fake_socket(
            (_ssdp_response("https://bmc.example.com/redfish/v1"), ("10.0.0.11", 1900)),
        )
        hosts = _discovery(sock).discover()
        assert [h.address for h in hosts] == ["10.0.0.11"]

    @pytest.mark.parametrize(
        "al",
        [
            None,
            "http://10.0.0.9/redfish/v1",
            "https://10.0.0.9/redfish/v1/Systems",
            "https://10.0.0.9/",
            "garbage",
        ],
    )
    def test_invalid_responses_dropped(self, al: str | None) -> None:
        sock = _fake_socket(
            (_ssdp_response(al), ("10.0.0.8", 1900)),
            (_ssdp_response("https://10.0.0.9/redfish/v1"), ("10.0.0.9", 1900)),
        )
        hosts = _discovery(sock).discover()
        assert [h.address for h in hosts] == ["10.0.0.9"]

    def test_no_responses(self) -> None:
        assert _discovery(_fake_socket()).discover() == []

    def test_read_error_does_not_abort(self) -> None:
        sock = _fake_socket(
            OSError("connection refused"),
            (_ssdp_response("https://10.0.0.9/redfish/v1"), ("10.0.0.9", 1900)),
        )
        hosts = _discovery(sock).discover()
        assert [h.address for h in hosts] == ["10.0.0.9"]

    def test_non_utf8_response_dropped(self) -> None:
        sock = _fake_socket((b"\xff\xfe\x00garbage", ("10.0.0.8", 1900)))
        assert _discovery(sock).discover() == []

    def test_socket_timeout_set_from_deadline(self) -> None:
        sock = _fake_socket()
        _discovery(sock, timeout=5.0).discover()
        (remaining,), _ = sock.settimeout.call_args
        assert 0 < remaining <= 5.0

    def test_uses_buffer_size(self) -> None:
        sock = _fake_socket()
        SSDPDiscovery(buffer_size=2048, socket_factory=lambda: sock).discover()
        sock.recvfrom.assert_called_with(2048)

    def test_socket_creation_failure(self) -> None:
        def factory() -> socket.socket:
            raise OSError("no network")

        with pytest.raises(RedfishDiscoveryError, match="failed to create UDP socket"):
            SSDPDiscovery(socket_factory=factory).discover()

    def test_send_failure(self) -> None:
        sock = _fake_socket()
        sock.sendto.side_effect = OSError("network unreachable")
        with pytest.raises(RedfishDiscoveryError, match="failed to send M-SEARCH"):
            _discovery(sock).discover()
        sock.__exit__.assert_called_once()


# ---------------------------------------------------------------------------
# DiscoveryWorker
# ---------------------------------------------------------------------------


class TestDiscoveryWorker:
    """Tests for the periodic discovery worker."""

    def test_run_once_passes_hosts_to_callback(self) -> None:
        host = DiscoveredHost(address="10.0.0.9", service_root="https://10.0.0.9/redfish/v1")
        discovery = MagicMock(spec=SSDPDiscovery)
        discovery.discover.return_value = [host]
        callback = MagicMock()

        result = DiscoveryWorker(discovery, callback, interval=60).run_once()

        assert result == [host]
        callback.assert_called_once_with([host])

    def test_run_once_failure_skips_callback(self) -> None:
        discovery = MagicMock(spec=SSDPDiscovery)
        discovery.discover.side_effect = RedfishDiscoveryError(message="failed to send M-SEARCH")
        callback = MagicMock()

        assert DiscoveryWorker(discovery, callback, interval=60).run_once() is None
        callback.assert_not_called()

    def test_start_and_stop(self) -> None:
        called = threading.Event()
        discovery = MagicMock(spec=SSDPDiscovery)
        discovery.discover.return_value = []

        worker = DiscoveryWorker(discovery, lambda hosts: called.set(), interval=60)
        worker.start()
        try:
            assert called.wait(timeout=5)
            assert worker.running is True
        finally:
            worker.stop(timeout=5)

        assert worker.running is False
        discovery.discover.assert_called_once()

    def test_unexpected_error_does_not_stop_worker(self, caplog: pytest.LogCaptureFixture) -> None:
        second_cycle = threading.Event()
        calls: list[int] = []

        def discover() -> list[DiscoveredHost]:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("socket exploded")
            second_cycle.set()
            return []

        discovery = MagicMock(spec=SSDPDiscovery)
        discovery.discover.side_effect = discover
        worker = DiscoveryWorker(discovery, lambda hosts: None, interval=0.01)

        with caplog.at_level(logging.ERROR, logger="redfish_mcp.discovery"):
            worker.start()
            try:
                assert second_cycle.wait(timeout=5)
                assert worker.running is True
            finally:
                worker.stop(timeout=5)

        assert "Unexpected error in discovery cycle" in caplog.text

    def test_start_twice_is_noop(self) -> None:
        discovery = MagicMock(spec=SSDPDiscovery)
        discovery.discover.return_value = []
        worker = DiscoveryWorker(discovery, lambda hosts: None, interval=60)
        worker.start()
        thread = worker._thread
        worker.start()
        assert worker._thread is thread
        worker.stop(timeout=5)

    def test_stop_before_start(self) -> None:
        worker = DiscoveryWorker(MagicMock(spec=SSDPDiscovery), lambda hosts: None, interval=60)
        worker.stop()
        assert worker.running is False
