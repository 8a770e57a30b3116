"""Shared pytest fixtures for redfish-mcp tests."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests do not leak environment variables.

    Removes Redfish- and MCP-related environment variables so that unit
    tests never accidentally pick up a developer's configuration unless
    they explicitly set the variables they need.
    """
    for key in list(os.environ):
        if key.startswith(("REDFISH_", "MCP_")):
            monkeypatch.delenv(key, raising=False)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: requires a live Redfish service")
    config.addinivalue_line("markers", "slow: long-running test")
