"""
Gateway client for the LingXing open API.

LingXingClient runs the full protocol of one outbound call:

    ADMITTING -> AUTHENTICATING -> SIGNING -> DISPATCHING
              -> SUCCEEDED | RETRYING (back to ADMITTING) | FAILED

Every attempt re-acquires an admission slot, re-resolves the access token
and re-signs the request with a fresh timestamp. The slot held by an attempt
is released exactly once when the attempt ends, whatever its outcome.

Example:
    >>> from lxapi import Credentials, InMemoryAccountStore, LingXingClient
    >>> store = InMemoryAccountStore([Credentials(app_id="my-app-id", app_secret="my-secret")])
    >>> client = LingXingClient(account_store=store)
    >>> body = client.post("my-app-id", "/erp/sc/data/mws/orders", {"offset": 0, "length": 100})
    >>> orders = body["data"]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import requests

from lxapi._auth import AccountStore, TokenManager
from lxapi._errors import (
    DEFAULT_SUCCESS_CODES,
    RateLimitedError,
    classify_response,
    is_known_code,
)
from lxapi._http import HttpClient, RequestsHttpClient
from lxapi._rate_limit import AdmissionController
from lxapi._retry import Retrying
from lxapi._signing import current_timestamp, generate_sign, serialize_value
from lxapi._utils import mask_secret

if TYPE_CHECKING:
    from lxapi._config import LXAPIConfig

logger = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE"})

# Query parameters masked in request descriptions.
_SENSITIVE_PARAMS = frozenset({"access_token", "sign"})


# =============================================================================
# Options
# =============================================================================


@dataclass(frozen=True)
class CallOptions:
    """
    Per-call options of LingXingClient.call().

    Attributes:
        max_retries: Maximum transparent retries of a retryable error.
            None uses LXAPI.config.client.max_retries.
        success_codes: Vendor codes treated as success in addition to 0 and 200.
        skip_rate_limit: Bypass the admission controller for this call.
        request_timeout: HTTP timeout in seconds.
            None uses LXAPI.config.client.request_timeout.
    """

    max_retries: int | None = None
    success_codes: tuple[int | str, ...] = DEFAULT_SUCCESS_CODES
    skip_rate_limit: bool = False
    request_timeout: int | None = None

    def resolved(self, max_retries: int, request_timeout: int) -> CallOptions:
        """Fill unset fields with the given defaults."""
        return replace(
            self,
            max_retries=self.max_retries if self.max_retries is not None else max_retries,
            request_timeout=self.request_timeout if self.request_timeout is not None else request_timeout,
        )


# =============================================================================
# Helpers
# =============================================================================


def describe_request(
    method: str,
    url: str,
    params: dict[str, Any] | None = None,
    body: dict[str, Any] | None = None,
) -> str:
    """
    Build a curl command equivalent to a request, with secrets masked.

    Example:
        >>> print(describe_request("GET", "https://openapi.lingxing.com/erp/sc/data/seller/lists",
        ...                        {"app_key": "app", "access_token": "abcdefghijklmnop"}))
        curl -X GET 'https://openapi.lingxing.com/erp/sc/data/seller/lists?app_key=app&access_token=abcd%2A%2A%2A%2A%2A%2A%2A%2Amnop'
    """
    query = {
        key: mask_secret(str(value)) if key in _SENSITIVE_PARAMS else value
        for key, value in (params or {}).items()
        if value is not None
    }
    target = f"{url}?{urlencode(query)}" if query else url
    parts = [f"curl -X {method} '{target}'"]
    if body is not None:
        parts.append("-H 'Content-Type: application/json'")
        parts.append(f"-d '{json.dumps(body, ensure_ascii=False, default=str)}'")
    return " ".join(parts)


def _query_value(value: Any) -> str | None:
    """Render a business param for the query string exactly as it is signed."""
    if value is None:
        return None
    return serialize_value(value)


# =============================================================================
# Client
# =============================================================================


class LingXingClient:
    """
    Resilient client for the LingXing open API.

    Collaborators are injected; missing ones are built from LXAPI.config.
    Passing `admission_controller=None` while `rate_limit.enabled` is True
    creates a controller owned (and closed) by this client.

    Args:
        account_store: Credential records, keyed by app id.
        admission_controller: Shared per-endpoint concurrency limiter.
        http_client: Transport for business and token calls.
        token_manager: Access token resolution (built from account_store if None).
        base_url: Base URL override.
        config: Configuration to use instead of LXAPI.config.
    """

    def __init__(
        self,
        account_store: AccountStore,
        admission_controller: AdmissionController | None = None,
        http_client: HttpClient | None = None,
        token_manager: TokenManager | None = None,
        base_url: str | None = None,
        config: LXAPIConfig | None = None,
    ):
        assert account_store is not None, "account_store cannot be None"

        if config is None:
            from lxapi._config import LXAPI

            config = LXAPI.config

        self.config = config
        self.base_url = (base_url or config.client.base_url).rstrip("/")
        self.http_client = http_client or RequestsHttpClient()
        self.token_manager = token_manager or TokenManager.from_config(
            account_store=account_store,
            http_client=self.http_client,
            config=config,
            base_url=self.base_url,
        )

        self._owns_admission_controller = False
        if admission_controller is None and config.rate_limit.enabled:
            admission_controller = AdmissionController.from_config(config.rate_limit)
            self._owns_admission_controller = True
        self.admission_controller = admission_controller

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def call(
        self,
        identity: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        options: CallOptions | None = None,
    ) -> dict[str, Any]:
        """
        Call a business endpoint and return its parsed response body.

        Args:
            identity: App id whose credentials (and rate-limit buckets) are used.
            method: GET, POST, PUT or DELETE.
            path: Endpoint path, appended to the base URL.
            params: Business parameters (query string for GET, JSON body otherwise).
            options: Per-call options.

        Returns:
            The vendor's parsed JSON body.

        Raises:
            RateLimitedError: If no admission slot was available on the last attempt.
            LingXingApiError: For vendor-classified failures (after retries).
            AuthenticationError: If no access token could be obtained.
            requests.RequestException: For transport failures without a vendor code.
        """
        assert identity, "identity cannot be empty."
        assert method, "method cannot be empty."
        assert method.upper() in ALLOWED_METHODS, f"method must be one of {sorted(ALLOWED_METHODS)}."
        assert path, "path cannot be empty."

        method = method.upper()
        opts = (options or CallOptions()).resolved(
            max_retries=self.config.client.max_retries,
            request_timeout=self.config.client.request_timeout,
        )
        assert opts.max_retries is not None  # for type checker
        url = f"{self.base_url}{path}"
        business_params = dict(params or {})

        retrying = Retrying(
            max_retries=opts.max_retries,
            backoff_factor=self.config.client.backoff_factor,
            logger_prefix=f"{identity} | LX",
        )
        for attempt in retrying:
            with attempt:
                return self._attempt(identity, method, url, business_params, opts)

        raise AssertionError("Retry loop ended without a result")  # never reached

    def get(self, identity: str, path: str, params: dict[str, Any] | None = None,
            options: CallOptions | None = None) -> dict[str, Any]:
        """Shortcut for call(identity, "GET", ...)."""
        return self.call(identity, "GET", path, params, options)

    def post(self, identity: str, path: str, params: dict[str, Any] | None = None,
             options: CallOptions | None = None) -> dict[str, Any]:
        """Shortcut for call(identity, "POST", ...)."""
        return self.call(identity, "POST", path, params, options)

    def put(self, identity: str, path: str, params: dict[str, Any] | None = None,
            options: CallOptions | None = None) -> dict[str, Any]:
        """Shortcut for call(identity, "PUT", ...)."""
        return self.call(identity, "PUT", path, params, options)

    def delete(self, identity: str, path: str, params: dict[str, Any] | None = None,
               options: CallOptions | None = None) -> dict[str, Any]:
        """Shortcut for call(identity, "DELETE", ...)."""
        return self.call(identity, "DELETE", path, params, options)

    def close(self) -> None:
        """Release resources owned by this client."""
        if self._owns_admission_controller and self.admission_controller is not None:
            self.admission_controller.close()

    def __enter__(self) -> LingXingClient:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    def _attempt(
        self,
        identity: str,
        method: str,
        url: str,
        params: dict[str, Any],
        opts: CallOptions,
    ) -> dict[str, Any]:
        grant_id = self._admit(identity, method, url, opts)
        try:
            access_token = self.token_manager.get_access_token(identity)

            common = {
                "access_token": access_token,
                "app_key": identity,
                "timestamp": current_timestamp(),
            }
            all_params = {**common, **params}
            sign = generate_sign(identity, all_params)

            body: dict[str, Any] | None
            if method == "GET":
                query = {key: _query_value(value) for key, value in all_params.items()}
                query["sign"] = sign
                body = None
            else:
                query = {**common, "sign": sign}
                body = params

            description = describe_request(method, url, query, body)
            try:
                response = self.http_client.request(
                    method,
                    url,
                    params=query,
                    json=body,
                    headers={"Content-Type": "application/json"},
                    timeout=opts.request_timeout or 30,
                )
            except requests.RequestException as e:
                e.add_note(f"Request: {description}")
                logger.error(f"{identity} | LX | ❌ Request failed: {e}")
                raise

            return self._handle_response(identity, response, opts, description)
        finally:
            if grant_id is not None and self.admission_controller is not None:
                self.admission_controller.release(identity, url, grant_id)

    def _admit(self, identity: str, method: str, url: str, opts: CallOptions) -> str | None:
        """Take an admission slot, or raise RateLimitedError. Returns the grant id."""
        if opts.skip_rate_limit or self.admission_controller is None:
            return None

        result = self.admission_controller.acquire(identity, url)
        if not result.granted:
            error = RateLimitedError(identity, url, retry_after=self.config.rate_limit.retry_after)
            error.request = describe_request(method, url)
            raise error
        return result.grant_id

    def _handle_response(
        self,
        identity: str,
        response: requests.Response,
        opts: CallOptions,
        description: str,
    ) -> dict[str, Any]:
        """Parse and classify a response; raise LingXingApiError on vendor errors."""
        try:
            body = response.json()
        except ValueError as e:
            e.add_note(f"Request: {description}")
            if not response.ok:
                logger.error(f"{identity} | LX | ❌ HTTP {response.status_code} without a JSON body.")
                response.raise_for_status()
            raise

        if not response.ok:
            code = body.get("code") if isinstance(body, dict) else None
            if code is None or not is_known_code(code):
                logger.error(f"{identity} | LX | ❌ HTTP {response.status_code}: {body}")
                try:
                    response.raise_for_status()
                except requests.HTTPError as e:
                    e.add_note(f"Request: {description}")
                    raise

        error = classify_response(body, opts.success_codes)
        if error is None:
            return body

        error.request = description
        if error.should_refresh_token:
            self.token_manager.invalidate(identity)
        if error.is_rate_limit:
            logger.warning(f"{identity} | LX | Vendor rate limit hit on {response.url}.")
        else:
            logger.error(f"{identity} | LX | ❌ {error} ({error.description}) -> {description}")
        raise error
