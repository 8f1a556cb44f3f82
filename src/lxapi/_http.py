"""
HTTP transport abstraction for the lxapi client.

All network I/O of the client (business calls and token endpoints) goes
through an HttpClient, so tests and applications can swap the transport
without touching the signing, auth or retry logic.

Available implementations:
    - RequestsHttpClient: Default. Uses a pooled `requests.Session`.

Example:
    >>> from lxapi._http import RequestsHttpClient
    >>> http = RequestsHttpClient()
    >>> response = http.request("GET", "https://openapi.lingxing.com/erp/sc/data/seller/lists", params={...})
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, override

import requests

logger = logging.getLogger(__name__)


class HttpClient(ABC):
    """
    Abstract base class for HTTP transports.

    Implementations perform one raw HTTP exchange; they do not sign,
    authenticate, classify or retry.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def request(self, method, url, params=None, json=None, data=None, headers=None, timeout=30):
        ...         return requests.request(method, url, params=params, json=json, data=data,
        ...                                 headers=headers, timeout=timeout)
    """

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Execute an HTTP request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            url: The full URL to request.
            params: Query string parameters.
            json: JSON-serializable request body.
            data: Form-encoded request body.
            headers: Additional headers to include.
            timeout: Request timeout in seconds.

        Returns:
            The HTTP response.

        Raises:
            requests.RequestException: If the HTTP exchange fails.
        """
        pass

    def post_form(
        self,
        url: str,
        data: dict[str, Any],
        timeout: int = 30,
    ) -> requests.Response:
        """Execute a form-encoded POST (used by the token endpoints)."""
        return self.request(
            "POST",
            url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=timeout,
        )


class RequestsHttpClient(HttpClient):
    """
    HTTP client backed by a `requests.Session`.

    The session is created lazily and reused for connection pooling.
    `requests.Session` is not documented as thread-safe for configuration
    changes, but concurrent `request()` calls on a configured session are
    the common pattern; the lazy creation itself is guarded by a lock.

    Args:
        session: Optional pre-configured session (proxies, adapters, etc.).
    """

    def __init__(self, session: requests.Session | None = None):
        self._session = session
        self._lock = threading.Lock()

    def _get_session(self) -> requests.Session:
        if self._session is None:
            with self._lock:
                if self._session is None:
                    self._session = requests.Session()
        return self._session

    @override
    def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Execute an HTTP request through the shared session.

        Raises:
            AssertionError: If url is empty or timeout is invalid.
            requests.RequestException: If the HTTP request fails.
        """
        assert method, "Method cannot be empty."
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        return self._get_session().request(
            method.upper(),
            url,
            params=params,
            json=json,
            data=data,
            headers=headers,
            timeout=timeout,
        )

    def close(self) -> None:
        """Close the underlying session."""
        if self._session is not None:
            self._session.close()
