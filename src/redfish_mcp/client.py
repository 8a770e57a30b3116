"""Redfish REST client for the Redfish MCP server.

Provides the ``RedfishClient`` class that authenticates to one Redfish
service and performs resilient HTTP calls against arbitrary resource paths:
connection pooling and TLS policy, basic or session authentication, URL
construction, response decoding, error classification and a retry loop
with exponential backoff.

A client is request-scoped: build it from a ``ClientConfig``, log in,
issue one operation, then close it.  Instances are never shared between
threads.

Usage::

    from redfish_mcp.client import RedfishClient
    from redfish_mcp.models import ClientConfig

    config = ClientConfig(address="10.0.0.5", username="admin", password="secret")
    with RedfishClient(config) as client:
        client.login()
        response = client.get_with_headers("/redfish/v1/Systems")
"""

from __future__ import annotations

import logging
import random
import ssl
import threading
import time
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from urllib3.util.ssl_ import create_urllib3_context

from .exceptions import (
    RedfishAPIError,
    RedfishAuthError,
    RedfishConnectionError,
    RedfishError,
    RequestCancelledError,
    is_retryable,
)
from .models import AuthMethod, ClientConfig, RedfishResponse


SESSION_SERVICE_PATH = "/redfish/v1/SessionService/Sessions"
AUTH_TOKEN_HEADER = "X-Auth-Token"

DEFAULT_POOL_SIZE = 10

# Jitter adds up to this fraction of the computed delay
_JITTER_FRACTION = 0.1

# Response headers returned by get_with_headers, keyed by lower-case name
_ALLOWED_HEADERS: dict[str, str] = {
    "allow": "Allow",
    "content-type": "Content-Type",
    "content-encoding": "Content-Encoding",
    "etag": "ETag",
    "link": "Link",
}


class _TLSAdapter(HTTPAdapter):
    """``HTTPAdapter`` that pins every pooled connection to one SSL context."""

    def __init__(self, ssl_context: ssl.SSLContext, **kwargs: Any) -> None:
        self._ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, connections: int, maxsize: int, block: bool = False, **pool_kwargs: Any) -> None:
        pool_kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


def _create_ssl_context(config: ClientConfig) -> ssl.SSLContext:
    """Build the SSL context for a client.

    TLS 1.2 is the minimum protocol version.  Certificates are verified
    unless ``insecure_skip_verify`` is set; a configured
    ``tls_server_ca_cert`` replaces the system trust store.
    """
    cert_reqs = ssl.CERT_NONE if config.insecure_skip_verify else ssl.CERT_REQUIRED
    context = create_urllib3_context(
        ssl_minimum_version=ssl.TLSVersion.TLSv1_2,
        cert_reqs=cert_reqs,
    )
    if config.insecure_skip_verify:
        return context
    if config.tls_server_ca_cert:
        context.load_verify_locations(cafile=config.tls_server_ca_cert)
    else:
        context.load_default_certs()
    return context


def _verify_setting(config: ClientConfig) -> bool | str:
    """Return the ``verify`` argument passed to every request.

    A configured CA file is passed as the bundle path so that requests never
    falls back to its default bundle for that host.
    """
    if config.insecure_skip_verify:
        return False
    return config.tls_server_ca_cert or True


def _create_session(config: ClientConfig, pool_size: int = DEFAULT_POOL_SIZE) -> requests.Session:
    """Create a ``requests.Session`` with connection pooling and the TLS policy.

    urllib3-level retries are disabled: every retry decision is made by
    ``RedfishClient`` so that 4xx responses are never retried and the last
    real error reaches the caller.

    Raises:
        RedfishConnectionError: If the CA certificate cannot be loaded.
    """
    try:
        ssl_context = _create_ssl_context(config)
    except (OSError, ssl.SSLError) as exc:
        raise RedfishConnectionError(
            message=f"Failed to load CA certificate {config.tls_server_ca_cert!r}: {exc}",
            details={"tls_server_ca_cert": config.tls_server_ca_cert},
        ) from exc

    adapter = _TLSAdapter(
        ssl_context,
        max_retries=Retry(total=0, read=False, raise_on_status=False),
        pool_connections=pool_size,
        pool_maxsize=pool_size,
    )

    session = requests.Session()
    session.mount("https://", adapter)
    return session


def _handle_request_exception(exc: requests.exceptions.RequestException) -> None:
    """Convert a ``requests`` library exception into a ``RedfishConnectionError``.

    This function always raises and never returns.
    """
    if isinstance(exc, requests.exceptions.Timeout):
        raise RedfishConnectionError(
            message=f"Request timed out: {exc}",
            details={"original_error": str(exc)},
        ) from exc
    elif isinstance(exc, requests.exceptions.SSLError):
        raise RedfishConnectionError(
            message=f"TLS handshake failed: {exc}",
            details={"original_error": str(exc)},
        ) from exc
    elif isinstance(exc, requests.exceptions.ConnectionError):
        raise RedfishConnectionError(
            message=f"Connection failed: {exc}",
            details={"original_error": str(exc)},
        ) from exc
    else:
        raise RedfishConnectionError(
            message=f"HTTP request failed: {exc}",
            details={"original_error": str(exc)},
        ) from exc


def _collect_headers(response: requests.Response) -> dict[str, list[str]]:
    """Return all response headers as ``name -> [values]``.

    Repeated headers keep each value separately when the underlying urllib3
    response is available; otherwise each header has a single value.
    """
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return {name: list(raw_headers.getlist(name)) for name in raw_headers}
    return {name: [value] for name, value in response.headers.items()}


def filter_headers(headers: Mapping[str, list[str]]) -> dict[str, list[str]]:
    """Reduce response headers to the allow-list, in canonical casing.

    Header names are matched case-insensitively against ``Allow``,
    ``Content-Type``, ``Content-Encoding``, ``ETag`` and ``Link``.  Unknown
    headers and headers without values are dropped.

    Example::

        filter_headers({"etag": ['"abc"'], "x-custom": ["ignored"]})
        # Returns: {"ETag": ['"abc"']}
    """
    filtered: dict[str, list[str]] = {}
    for name, values in headers.items():
        canonical = _ALLOWED_HEADERS.get(name.lower())
        if canonical is None or not values:
            continue
        filtered.setdefault(canonical, []).extend(values)
    return filtered


class RedfishClient:
    """Client for one Redfish service.

    Handles authentication, session management, URL construction, response
    decoding and error handling.  Every request runs inside a retry loop:
    at most ``max_retries + 1`` attempts, exponential backoff between them
    starting at ``initial_delay`` and capped at ``max_delay``.  4xx
    responses are never retried.

    All public request methods raise ``RedfishError`` subclasses on failure.
    Callers (the tools layer) are responsible for catching these exceptions
    and converting them to structured error responses.

    Args:
        config: Fully resolved client configuration.
        logger: Logger to use instead of the module logger.
        session: Pre-configured ``requests.Session`` to use.  If provided,
            the TLS policy from ``config`` is not applied to it.
        cancel_event: Optional event; once set, the client stops before the
            next attempt or during a backoff sleep with
            ``RequestCancelledError``.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._config = config
        self._base_url = config.base_url
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._cancel_event = cancel_event
        self._session_token = ""
        self._session_uri = ""
        self._verify: bool | str = _verify_setting(config)

        if session is not None:
            self._session = session
        else:
            self._session = _create_session(config)

        if config.insecure_skip_verify:
            self._logger.warning("TLS certificate verification disabled for %s", config.address)

        self._logger.debug(
            "RedfishClient initialized: base_url=%s, auth_method=%s, timeout=%s, max_retries=%d",
            self._base_url,
            config.auth_method.value,
            config.timeout,
            config.max_retries,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        """Return the client configuration."""
        return self._config

    @property
    def base_url(self) -> str:
        """Return ``https://address:port``."""
        return self._base_url

    @property
    def session(self) -> requests.Session:
        """Return the underlying ``requests.Session`` for inspection."""
        return self._session

    @property
    def session_token(self) -> str:
        """Return the current session token, ``""`` when not logged in."""
        return self._session_token

    @property
    def session_uri(self) -> str:
        """Return the ``Location`` of the session created by ``login``, if any."""
        return self._session_uri

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Log out and release the connection pool.

        Safe to call whether or not ``login`` was ever called.
        """
        self.logout()
        self._session.close()
        self._logger.debug("RedfishClient session closed for %s", self._config.address)

    def __enter__(self) -> RedfishClient:
        """Support usage as a context manager."""
        return self

    def __exit__(self, *args: object) -> None:
        """Close the client on context manager exit."""
        self.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def login(self) -> None:
        """Authenticate with the Redfish service.

        Basic authentication needs no network call; credentials are sent
        with every request.  Session authentication POSTs the credentials to
        the SessionService and keeps the returned token, read from the
        ``X-Auth-Token`` header or, failing that, a ``token`` body field.

        Raises:
            RedfishAuthError: If the login response is not 200/201 or
                carries no token.  No token is kept in that case.
            RedfishConnectionError: On network failures.
        """
        if self._config.auth_method is AuthMethod.BASIC:
            self._logger.info("Using basic authentication for %s", self._config.address)
            return
        self._login_session()

    def _login_session(self) -> None:
        url = self._build_url(SESSION_SERVICE_PATH)
        payload = {"UserName": self._config.username, "Password": self._config.password}

        self._check_cancelled()
        try:
            response = self._session.request(
                "POST",
                url,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                json=payload,
                timeout=self._config.timeout,
                verify=self._verify,
            )
        except requests.exceptions.RequestException as exc:
            self._logger.error("Login request to %s failed: %s", self._config.address, exc)
            _handle_request_exception(exc)

        if response.status_code not in (200, 201):
            raise RedfishAuthError(
                message=f"login failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                details={"url": url, "body": response.text},
            )

        token = response.headers.get(AUTH_TOKEN_HEADER, "")
        if not token:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("token"), str):
                token = body["token"]

        if not token:
            raise RedfishAuthError(
                message="no session token found in response",
                status_code=response.status_code,
                details={"url": url},
            )

        self._session_token = token
        self._session_uri = response.headers.get("Location", "")
        self._logger.info("Session authentication successful for %s", self._config.address)

    def logout(self) -> None:
        """Discard the session token.

        The session is not deleted on the server; it expires there on its
        own.  Calling this twice, or without a prior login, is a no-op.
        """
        if not self._session_token:
            return
        self._session_token = ""
        self._session_uri = ""
        self._logger.info("Session cleared for %s", self._config.address)

    # ------------------------------------------------------------------
    # URL construction
    # ------------------------------------------------------------------

    def _build_url(self, resource_path: str) -> str:
        """Join the base URL and a resource path.

        Args:
            resource_path: A path such as ``/redfish/v1/Systems``; a missing
                leading slash is added.

        Returns:
            The full URL, e.g. ``https://10.0.0.5:443/redfish/v1/Systems``.
        """
        if not resource_path.startswith("/"):
            resource_path = "/" + resource_path
        return f"{self._base_url}{resource_path}"

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise RequestCancelledError(details={"address": self._config.address})

    def _backoff_delay(self, retry_number: int) -> float:
        """Return the delay before retry ``retry_number`` (1-based)."""
        config = self._config
        delay = min(config.initial_delay * config.backoff_factor ** (retry_number - 1), config.max_delay)
        if config.jitter:
            delay = min(delay + random.uniform(0, delay * _JITTER_FRACTION), config.max_delay)
        return delay

    def _sleep(self, delay: float) -> None:
        if self._cancel_event is None:
            time.sleep(delay)
        elif self._cancel_event.wait(delay):
            raise RequestCancelledError(details={"address": self._config.address})

    def _request(
        self,
        method: str,
        resource_path: str,
        *,
        json_body: Any = None,
    ) -> RedfishResponse:
        """Execute a request, retrying retryable failures.

        Raises:
            RedfishError: The error from the last attempt, or the first
                non-retryable one.
        """
        attempts = self._config.max_retries + 1
        attempt = 1

        while True:
            self._check_cancelled()
            try:
                return self._do_request(method, resource_path, json_body=json_body)
            except RedfishError as exc:
                if not is_retryable(exc) or attempt >= attempts:
                    raise
                delay = self._backoff_delay(attempt)
                self._logger.warning(
                    "Redfish request failed, retrying: %s %s (attempt %d/%d, next in %.2fs): %s",
                    method,
                    resource_path,
                    attempt,
                    attempts,
                    delay,
                    exc.message,
                )
                self._sleep(delay)
            attempt += 1

    def _do_request(
        self,
        method: str,
        resource_path: str,
        *,
        json_body: Any = None,
    ) -> RedfishResponse:
        """Perform a single HTTP attempt.

        Decodes the body as JSON, falling back to raw text.  Any status
        >= 400 raises ``RedfishAPIError`` carrying the status and raw body.
        """
        url = self._build_url(resource_path)
        self._logger.debug("Making Redfish request: %s %s", method, url)

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        kwargs: dict[str, Any] = {
            "headers": headers,
            "timeout": self._config.timeout,
            "verify": self._verify,
        }
        if self._config.auth_method is AuthMethod.BASIC:
            if self._config.username and self._config.password:
                kwargs["auth"] = (self._config.username, self._config.password)
        elif self._session_token:
            headers[AUTH_TOKEN_HEADER] = self._session_token
        if json_body is not None:
            kwargs["json"] = json_body

        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as exc:
            _handle_request_exception(exc)

        text = response.text
        if response.status_code >= 400:
            raise RedfishAPIError(
                message=f"HTTP {response.status_code}: {text}",
                status_code=response.status_code,
                details={"url": url, "method": method, "body": text},
            )

        data: Any = ""
        if response.content:
            try:
                data = response.json()
            except ValueError as exc:
                self._logger.warning("Failed to parse JSON response from %s, returning raw body: %s", url, exc)
                data = text
            if data is None:
                # A JSON null body is returned as its raw text, never None
                data = text

        self._logger.debug("Redfish response: %s %s -> %d", method, url, response.status_code)
        return RedfishResponse(
            status_code=response.status_code,
            headers=_collect_headers(response),
            data=data,
        )

    # ------------------------------------------------------------------
    # Public HTTP methods
    # ------------------------------------------------------------------

    def get(self, resource_path: str) -> RedfishResponse:
        """Send a GET request for a resource path."""
        return self._request("GET", resource_path)

    def post(self, resource_path: str, data: Any) -> RedfishResponse:
        """Send a POST request with ``data`` as the JSON body."""
        return self._request("POST", resource_path, json_body=data)

    def patch(self, resource_path: str, data: Any) -> RedfishResponse:
        """Send a PATCH request with ``data`` as the JSON body."""
        return self._request("PATCH", resource_path, json_body=data)

    def delete(self, resource_path: str) -> RedfishResponse:
        """Send a DELETE request for a resource path."""
        return self._request("DELETE", resource_path)

    def get_with_headers(self, resource_path: str) -> RedfishResponse:
        """Send a GET request and keep only the allow-listed response headers.

        Returns:
            A ``RedfishResponse`` whose ``headers`` contain at most
            ``Allow``, ``Content-Type``, ``Content-Encoding``, ``ETag`` and
            ``Link``.
        """
        response = self._request("GET", resource_path)
        return response.model_copy(update={"headers": filter_headers(response.headers)})
