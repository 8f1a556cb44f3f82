"""
LingXing open API client for Python.

A resilient client for the LingXing ERP open API: per-endpoint admission
control, access token management, request signing and bounded retry of
classified vendor errors.

Quick Start:
    >>> from lxapi import Credentials, InMemoryAccountStore, LingXingClient
    >>> store = InMemoryAccountStore([Credentials(app_id="my-app-id", app_secret="my-secret")])
    >>> with LingXingClient(account_store=store) as client:
    ...     body = client.post("my-app-id", "/erp/sc/data/mws/orders", {"offset": 0, "length": 100})
    >>> print(body["data"])

Global Configuration:
    >>> from lxapi import LXAPI
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> retries = LXAPI.config.client.max_retries
    >>>
    >>> # Custom configuration
    >>> LXAPI.configure(
    ...     client={"request_timeout": 60, "max_retries": 3},
    ...     rate_limit={"default_capacity": 5, "capacity_table": {"/erp/sc/": 1}},
    ... )

Main Classes:
    - LingXingClient: Client for calling LingXing business endpoints.
    - CallOptions: Per-call options (retries, success codes, rate limit bypass).

Configuration:
    - LXAPI: Global configuration singleton.
    - LXAPIConfig: Root configuration dataclass.
    - ClientConfig: Business call configuration.
    - AuthConfig: Token endpoint configuration.
    - RateLimitConfig: Admission controller configuration.
    - ConfigEnvVarError: Exception raised when env var parsing fails.
    - ConfigValidationError: Exception raised when config validation fails.

Authentication:
    - Credentials: Snapshot of one identity's credential record.
    - CredentialState: VALID / EXPIRED / ABSENT.
    - AccountStore: Abstract base class for credential persistence.
    - InMemoryAccountStore: Thread-safe in-process AccountStore.
    - TokenManager: Obtains, refreshes and invalidates access tokens.
    - AuthenticationError: Exception raised when a token endpoint fails.
    - UnknownIdentityError: Exception raised for unregistered app ids.

Rate Limiting:
    - AdmissionController: Fail-fast per-(app id, endpoint) concurrency limiter.
    - AdmissionResult: Outcome of an admission attempt.
    - BucketSnapshot: Read-only view of a bucket.

Errors:
    - LingXingApiError: Classified vendor error.
    - RateLimitedError: Local admission denial.
    - ErrorInfo: Registry entry of a vendor error code.

HTTP Client:
    - HttpClient: Abstract base class for HTTP transports.
    - RequestsHttpClient: Default transport backed by requests.Session.

Signing:
    - generate_sign: Compute the `sign` parameter of a request.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("lxapi")

from lxapi._auth import (
    AccountStore,
    AuthenticationError,
    Credentials,
    CredentialState,
    InMemoryAccountStore,
    TokenManager,
    UnknownIdentityError,
)
from lxapi._client import CallOptions, LingXingClient, describe_request
from lxapi._config import (
    LXAPI,
    AuthConfig,
    ClientConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    LXAPIConfig,
    RateLimitConfig,
)
from lxapi._errors import (
    ERROR_CODES,
    ErrorInfo,
    LingXingApiError,
    RateLimitedError,
    classify_response,
    get_error_info,
)
from lxapi._http import HttpClient, RequestsHttpClient
from lxapi._rate_limit import AdmissionController, AdmissionResult, BucketSnapshot
from lxapi._retry import Retrying
from lxapi._signing import generate_sign

__all__ = [
    "__version__",
    # Client
    "LingXingClient",
    "CallOptions",
    "describe_request",
    # Configuration
    "LXAPI",
    "LXAPIConfig",
    "ClientConfig",
    "AuthConfig",
    "RateLimitConfig",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Authentication
    "Credentials",
    "CredentialState",
    "AccountStore",
    "InMemoryAccountStore",
    "TokenManager",
    "AuthenticationError",
    "UnknownIdentityError",
    # Rate Limiting
    "AdmissionController",
    "AdmissionResult",
    "BucketSnapshot",
    # Errors
    "ERROR_CODES",
    "ErrorInfo",
    "LingXingApiError",
    "RateLimitedError",
    "classify_response",
    "get_error_info",
    # HTTP Client
    "HttpClient",
    "RequestsHttpClient",
    # Retry
    "Retrying",
    # Signing
    "generate_sign",
]
