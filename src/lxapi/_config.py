"""
Global configuration for the lxapi client.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call LXAPI.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Options passed to LingXingClient / CallOptions
2. Values set via LXAPI.configure()
3. Environment variables (LXAPI_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from lxapi import LXAPI
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> base_url = LXAPI.config.client.base_url
    >>>
    >>> # Custom configuration
    >>> LXAPI.configure(
    ...     client={"max_retries": 3},
    ...     rate_limit={"default_capacity": 5, "capacity_table": (("/erp/sc/", 1),)},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

# Ordered (substring pattern, capacity) pairs; first match wins.
CapacityTable = tuple[tuple[str, int], ...]

DEFAULT_CAPACITY_TABLE: CapacityTable = (
    ("/bd/profit/report/open/report/", 10),
    ("/cost/center/api/cost/stream", 10),
    ("/erp/sc/", 1),
    ("/basicOpen/", 1),
    ("/bd/", 1),
)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


def parse_capacity_table(raw: str) -> CapacityTable:
    """
    Parse a capacity table from its env var form.

    Entries are comma separated `pattern=capacity` pairs, kept in order.

    Example:
        >>> parse_capacity_table("/erp/sc/=1, /bd/profit/=10")
        (('/erp/sc/', 1), ('/bd/profit/', 10))
    """
    table: list[tuple[str, int]] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        pattern, sep, capacity = entry.rpartition("=")
        if not sep or not pattern.strip():
            raise ValueError(f"Invalid capacity table entry: '{entry}'")
        table.append((pattern.strip(), int(capacity)))
    return tuple(table)


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("LXAPI_CLIENT_REQUEST_TIMEOUT", type_hint=int)
        30
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` method for creating new instances
    with partial field updates. Uses strict validation to catch
    typos and invalid field names early.

    Example:
        >>> config = ClientConfig()
        >>> custom = config.with_overrides({"request_timeout": 60})
        >>> custom.request_timeout
        60
    """

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Return a new instance with specified fields overridden.

        None values are ignored.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Reads env vars declared in field metadata and applies them as overrides.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(
                    var_name=env_var,
                    type_hint=f.type,
                    converter=f.metadata.get("converter"),
                )
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class ClientConfig(OverridableConfig):
    """
    Configuration for LingXingClient business calls.

    Attributes:
        base_url: Base URL of the LingXing open API.
            Env var: LXAPI_CLIENT_BASE_URL

        request_timeout: HTTP request timeout in seconds for business calls.
            Env var: LXAPI_CLIENT_REQUEST_TIMEOUT

        max_retries: Maximum transparent retries of a retryable error.
            Use 0 to disable retries (single attempt only).
            Env var: LXAPI_CLIENT_MAX_RETRIES

        backoff_factor: Base of the exponential wait between retries of
            errors without a server-suggested wait (backoff_factor * 2 ** attempt).
            Use 0 to retry immediately.
            Env var: LXAPI_CLIENT_BACKOFF_FACTOR

    Example:
        >>> from lxapi import LXAPI
        >>> LXAPI.config.client.max_retries
        2
    """

    base_url: str = field(default="https://openapi.lingxing.com", metadata={"env": "LXAPI_CLIENT_BASE_URL"})
    request_timeout: int = field(default=30, metadata={"env": "LXAPI_CLIENT_REQUEST_TIMEOUT"})
    max_retries: int = field(default=2, metadata={"env": "LXAPI_CLIENT_MAX_RETRIES"})
    backoff_factor: float = field(default=0.0, metadata={"env": "LXAPI_CLIENT_BACKOFF_FACTOR"})

    def validate(self) -> Self:
        """Validate client configuration fields."""
        if not (self.base_url.startswith("http://") or self.base_url.startswith("https://")):
            raise ConfigValidationError(
                "base_url", self.base_url,
                "Must start with 'http://' or 'https://'.", section="client"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="client"
            )
        if self.max_retries < 0:
            raise ConfigValidationError(
                "max_retries", self.max_retries,
                "Must be >= 0.", section="client"
            )
        if self.backoff_factor < 0:
            raise ConfigValidationError(
                "backoff_factor", self.backoff_factor,
                "Must be >= 0.", section="client"
            )
        return self


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Configuration for access token issuance and refresh.

    Attributes:
        access_token_path: Path of the token issuance endpoint (appId + appSecret).
            Env var: LXAPI_AUTH_ACCESS_TOKEN_PATH

        refresh_token_path: Path of the token refresh endpoint (appId + refreshToken).
            Env var: LXAPI_AUTH_REFRESH_TOKEN_PATH

        default_token_lifetime: Token lifetime in seconds used when the server
            does not send `expires_in`.
            Env var: LXAPI_AUTH_DEFAULT_TOKEN_LIFETIME

        request_timeout: HTTP request timeout in seconds for auth calls.
            Env var: LXAPI_AUTH_REQUEST_TIMEOUT
    """

    access_token_path: str = field(
        default="/api/auth-server/oauth/access-token",
        metadata={"env": "LXAPI_AUTH_ACCESS_TOKEN_PATH"},
    )
    refresh_token_path: str = field(
        default="/api/auth-server/oauth/refresh",
        metadata={"env": "LXAPI_AUTH_REFRESH_TOKEN_PATH"},
    )
    default_token_lifetime: int = field(default=7199, metadata={"env": "LXAPI_AUTH_DEFAULT_TOKEN_LIFETIME"})
    request_timeout: int = field(default=30, metadata={"env": "LXAPI_AUTH_REQUEST_TIMEOUT"})

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        for name in ("access_token_path", "refresh_token_path"):
            value = getattr(self, name)
            if not value.startswith("/"):
                raise ConfigValidationError(name, value, "Must start with '/'.", section="auth")
        if self.default_token_lifetime <= 0:
            raise ConfigValidationError(
                "default_token_lifetime", self.default_token_lifetime,
                "Must be greater than 0.", section="auth"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="auth"
            )
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Configuration for the per-endpoint admission controller.

    Each (app id, endpoint) pair gets a bucket whose capacity is the maximum
    number of concurrent outstanding calls. The capacity is looked up in
    `capacity_table` (first substring match wins) and falls back to
    `default_capacity`.

    Attributes:
        enabled: Whether LingXingClient consults the admission controller.
            Env var: LXAPI_RATE_LIMIT_ENABLED

        default_capacity: Capacity of endpoints not matched by the table.
            Env var: LXAPI_RATE_LIMIT_DEFAULT_CAPACITY

        capacity_table: Ordered (substring pattern, capacity) pairs.
            Env var: LXAPI_RATE_LIMIT_CAPACITY_TABLE ("pattern=cap,pattern=cap")

        grant_timeout: Seconds after which an unreleased grant is force-released.
            Env var: LXAPI_RATE_LIMIT_GRANT_TIMEOUT

        sweep_interval: Seconds between background sweeps for stale grants.
            Env var: LXAPI_RATE_LIMIT_SWEEP_INTERVAL

        retry_after: Suggested wait in seconds attached to local admission denials.
            Env var: LXAPI_RATE_LIMIT_RETRY_AFTER

    Example:
        >>> from lxapi import LXAPI
        >>> LXAPI.configure(rate_limit={"capacity_table": (("/a", 1),), "default_capacity": 5})
    """

    enabled: bool = field(default=True, metadata={"env": "LXAPI_RATE_LIMIT_ENABLED"})
    default_capacity: int = field(default=10, metadata={"env": "LXAPI_RATE_LIMIT_DEFAULT_CAPACITY"})
    capacity_table: CapacityTable = field(
        default=DEFAULT_CAPACITY_TABLE,
        metadata={"env": "LXAPI_RATE_LIMIT_CAPACITY_TABLE", "converter": parse_capacity_table},
    )
    grant_timeout: float = field(default=120.0, metadata={"env": "LXAPI_RATE_LIMIT_GRANT_TIMEOUT"})
    sweep_interval: float = field(default=60.0, metadata={"env": "LXAPI_RATE_LIMIT_SWEEP_INTERVAL"})
    retry_after: float = field(default=2.0, metadata={"env": "LXAPI_RATE_LIMIT_RETRY_AFTER"})

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """Accept capacity tables given as dicts or lists and freeze them into tuples."""
        if overrides and "capacity_table" in overrides and overrides["capacity_table"] is not None:
            processed = dict(overrides)
            table = processed["capacity_table"]
            items = table.items() if isinstance(table, dict) else table
            processed["capacity_table"] = tuple((str(p), int(c)) for p, c in items)
            overrides = processed
        return super().with_overrides(overrides)

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        if self.default_capacity < 1:
            raise ConfigValidationError(
                "default_capacity", self.default_capacity,
                "Must be at least 1.", section="rate_limit"
            )
        for pattern, capacity in self.capacity_table:
            if not pattern:
                raise ConfigValidationError(
                    "capacity_table", self.capacity_table,
                    "Patterns must not be empty.", section="rate_limit"
                )
            if capacity < 1:
                raise ConfigValidationError(
                    "capacity_table", self.capacity_table,
                    f"Capacity for '{pattern}' must be at least 1.", section="rate_limit"
                )
        if self.grant_timeout <= 0:
            raise ConfigValidationError(
                "grant_timeout", self.grant_timeout,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.sweep_interval <= 0:
            raise ConfigValidationError(
                "sweep_interval", self.sweep_interval,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.retry_after < 0:
            raise ConfigValidationError(
                "retry_after", self.retry_after,
                "Must be >= 0.", section="rate_limit"
            )
        return self


@dataclass(frozen=True)
class LXAPIConfig:
    """
    Global configuration for the lxapi client.

    Aggregates all configuration sections: client, auth and rate_limit.
    Access via the global `LXAPI.config` property.

    Example:
        >>> from lxapi import LXAPI
        >>> LXAPI.config.client.base_url
        'https://openapi.lingxing.com'
        >>> LXAPI.config.rate_limit.grant_timeout
        120.0
    """

    client: ClientConfig = field(default_factory=ClientConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    def with_env_vars(self) -> LXAPIConfig:
        """Return a new config with LXAPI_* environment variables applied on top."""
        return LXAPIConfig(
            client=self.client.with_env_vars(),
            auth=self.auth.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
        )

    def with_section_overrides(
        self,
        *,
        client: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
    ) -> LXAPIConfig:
        """
        Return a new config with overrides applied to nested sections.

        Each section dict is merged with the existing section config,
        only overriding the specified fields.
        """
        return LXAPIConfig(
            client=self.client.with_overrides(client or {}),
            auth=self.auth.with_overrides(auth or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
        )

    def validate(self) -> LXAPIConfig:
        """Validate every section."""
        self.client.validate()
        self.auth.validate()
        self.rate_limit.validate()
        return self


# =============================================================================
# Global Singleton
# =============================================================================


class _LXAPI:
    """
    Singleton for client configuration.

    Use `LXAPI.configure()` to customize settings and `LXAPI.config`
    to access current configuration.

    Example:
        >>> from lxapi import LXAPI
        >>> LXAPI.configure(client={"base_url": "https://openapi.lingxing.com"})
        >>> print(LXAPI.config.client.request_timeout)
    """

    def __init__(self) -> None:
        """Initialize with defaults and environment variables."""
        self._config: LXAPIConfig = LXAPIConfig().with_env_vars()

    def configure(
        self,
        *,
        client: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> LXAPIConfig:
        """
        Configure client settings.

        Call at application startup to customize defaults.

        Args:
            client: Client config overrides (base_url, request_timeout, max_retries, backoff_factor).
            auth: Auth config overrides (endpoint paths, default token lifetime).
            rate_limit: Admission controller overrides (capacity table, timeouts).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured LXAPIConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = LXAPIConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            client=client,
            auth=auth,
            rate_limit=rate_limit,
        )
        return self.validate()

    @property
    def config(self) -> LXAPIConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> LXAPIConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = LXAPIConfig().with_env_vars()
        return self.validate()

    def validate(self) -> LXAPIConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        return self._config.validate()

    def __repr__(self) -> str:
        return f"LXAPI(config={self._config!r})"


LXAPI = _LXAPI()
LXAPI.validate()
