"""Custom exception hierarchy for the Redfish MCP server.

Provides structured error handling for everything the device access layer
can fail on: rejected and failed HTTP requests, network problems, session
login, configuration and discovery transport. Exceptions are raised by
``RedfishClient``, ``SSDPDiscovery`` and the config loader, and caught at
the tools layer boundary to return structured error dicts to MCP callers.

Exception Hierarchy:
    RedfishError (base)
    +-- RedfishAPIError (any HTTP status >= 400)
    +-- RedfishConnectionError (timeouts, network issues, no status)
    +-- RedfishAuthError (session login failures)
    +-- RedfishConfigError (invalid hosts, ports, auth methods, transports)
    +-- RedfishDiscoveryError (SSDP socket or send failures)
    +-- RequestCancelledError (caller cancelled the request)
"""

from __future__ import annotations

from typing import Any


class RedfishError(Exception):
    """Base exception for all Redfish MCP errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code string.
        status_code: HTTP status code from the device, if applicable.
        details: Additional context about the error (optional).
    """

    def __init__(
        self,
        message: str = "Redfish error",
        error_code: str = "REDFISH_ERROR",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a structured error dict.

        Returns a dict compatible with the MCP tool response format,
        including the error message, error_code, and optionally
        status_code and details.
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.details:
            result["details"] = self.details
        return result


class RedfishAPIError(RedfishError):
    """Raised when a Redfish service answers with an HTTP status >= 400.

    4xx responses mean the request itself was rejected (bad path, bad
    credentials, bad payload). 5xx responses are server-side failures.
    The raw response body is kept in ``details["body"]``.
    """

    def __init__(
        self,
        message: str = "Redfish API error",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="REDFISH_API_ERROR",
            status_code=status_code,
            details=details,
        )


class RedfishConnectionError(RedfishError):
    """Raised for network-level failures: timeouts, DNS, refused connections, TLS.

    No HTTP response was received, so there is no status code.
    """

    def __init__(
        self,
        message: str = "Connection failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="CONNECTION_ERROR",
            status_code=None,
            details=details,
        )


class RedfishAuthError(RedfishError):
    """Raised when session login fails.

    Either the login POST returned a non-success status (kept in
    ``status_code``) or the response carried no session token.
    """

    def __init__(
        self,
        message: str = "Authentication failed",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=status_code,
            details=details,
        )


class RedfishConfigError(RedfishError):
    """Raised for invalid configuration: host JSON, port range, auth method, transport."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=None,
            details=details,
        )


class RedfishDiscoveryError(RedfishError):
    """Raised when the SSDP socket cannot be created or the M-SEARCH cannot be sent."""

    def __init__(
        self,
        message: str = "Discovery failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="DISCOVERY_ERROR",
            status_code=None,
            details=details,
        )


class RequestCancelledError(RedfishError):
    """Raised when the caller cancels a request before it completes."""

    def __init__(
        self,
        message: str = "Request cancelled",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="REQUEST_CANCELLED",
            status_code=None,
            details=details,
        )


def is_retryable(exc: BaseException) -> bool:
    """Return whether a failed request attempt should be retried.

    Client errors (HTTP 4xx) are problems with the request or the
    configuration and are never retried. Authentication, configuration and
    cancellation errors are final as well. Network failures and 5xx
    responses are retried.
    """
    if isinstance(exc, (RedfishAuthError, RedfishConfigError, RequestCancelledError)):
        return False
    if isinstance(exc, RedfishError) and exc.status_code is not None:
        if 400 <= exc.status_code < 500:
            return False
    return True
