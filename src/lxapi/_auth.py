"""
Credential management for the LingXing open API.

Each identity (app id) owns a credential record: its long-lived app secret
plus the current access token, refresh token and access token expiry. The
record lives in an external AccountStore; TokenManager is the only component
that mutates it.

Token resolution is a small state machine over the record:

    VALID    -> use the cached access token as is.
    EXPIRED  -> refresh with the refresh token; on any failure fall back
                to full authentication.
    ABSENT   -> full authentication with the app secret.

Example:
    >>> from lxapi._auth import Credentials, InMemoryAccountStore, TokenManager
    >>> store = InMemoryAccountStore([Credentials(app_id="my-app-id", app_secret="my-secret")])
    >>> tokens = TokenManager(account_store=store)
    >>> access_token = tokens.get_access_token("my-app-id")
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import requests

from lxapi._errors import LingXingApiError, is_success_code
from lxapi._http import HttpClient, RequestsHttpClient
from lxapi._utils import mask_secret

if TYPE_CHECKING:
    from lxapi._config import LXAPIConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class AuthenticationError(Exception):
    """
    Raised when a token endpoint cannot be reached or answers with garbage.

    Vendor-classified failures (e.g. a wrong app secret) are raised as
    LingXingApiError instead.

    Attributes:
        message: Description of the authentication failure.
        cause: The underlying exception that caused the failure, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class UnknownIdentityError(KeyError):
    """Raised when the account store has no credentials for an app id."""

    def __init__(self, app_id: str):
        super().__init__(app_id)
        self.app_id = app_id

    def __str__(self) -> str:
        return f"No credentials registered for app id '{self.app_id}'"


# =============================================================================
# Data Classes
# =============================================================================


class CredentialState(enum.StrEnum):
    """
    Usability of a credential record at a point in time.

    Attributes:
        VALID: Access token present and not expired.
        EXPIRED: Access token unusable, but a refresh token is available.
        ABSENT: Nothing usable; full authentication is required.
    """

    VALID = "VALID"
    EXPIRED = "EXPIRED"
    ABSENT = "ABSENT"


@dataclass(frozen=True)
class Credentials:
    """
    Snapshot of one identity's credential record.

    Attributes:
        app_id: Vendor-assigned application id (the identity).
        app_secret: Long-lived application secret.
        access_token: Current access token, if any.
        refresh_token: Current refresh token, if any.
        expires_at: Unix timestamp at which the access token expires.
    """

    app_id: str
    app_secret: str
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: float | None = None

    def has_valid_access_token(self, now: float | None = None) -> bool:
        """True while the access token exists and `now` is strictly before its expiry."""
        now = time.time() if now is None else now
        return bool(self.access_token) and self.expires_at is not None and now < self.expires_at

    def state(self, now: float | None = None) -> CredentialState:
        """Classify the record for token resolution."""
        if self.has_valid_access_token(now):
            return CredentialState.VALID
        if self.refresh_token:
            return CredentialState.EXPIRED
        return CredentialState.ABSENT

    def __repr__(self) -> str:
        return (
            f"Credentials(app_id={self.app_id!r}, app_secret={mask_secret(self.app_secret)!r}, "
            f"access_token={mask_secret(self.access_token)!r}, "
            f"refresh_token={mask_secret(self.refresh_token)!r}, expires_at={self.expires_at!r})"
        )


# =============================================================================
# Account Store
# =============================================================================


class AccountStore(ABC):
    """
    Persistence of credential records, keyed by app id.

    Implementations must make each write atomic with respect to concurrent
    readers (a reader sees either the old or the new three token fields).
    """

    @abstractmethod
    def get(self, app_id: str) -> Credentials:
        """
        Return the current credential snapshot.

        Raises:
            UnknownIdentityError: If no record exists for app_id.
        """
        pass

    @abstractmethod
    def save_tokens(
        self,
        app_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: float,
    ) -> None:
        """Overwrite access token, refresh token and expiry."""
        pass

    @abstractmethod
    def clear_tokens(self, app_id: str) -> None:
        """Set access token, refresh token and expiry to None."""
        pass

    @abstractmethod
    def invalidate_access_token(self, app_id: str) -> None:
        """Set access token and expiry to None, keeping the refresh token."""
        pass


class InMemoryAccountStore(AccountStore):
    """
    Thread-safe AccountStore kept in process memory.

    Suitable for tests, scripts and single-process workers; long-running
    services usually back AccountStore with their database.
    """

    def __init__(self, credentials: Iterable[Credentials] = ()):
        self._records: dict[str, Credentials] = {}
        self._lock = threading.Lock()
        for creds in credentials:
            self.add(creds)

    def add(self, credentials: Credentials) -> None:
        """Register (or replace) the record of an identity."""
        assert credentials.app_id, "app_id cannot be empty"
        assert credentials.app_secret, "app_secret cannot be empty"
        with self._lock:
            self._records[credentials.app_id] = credentials

    def get(self, app_id: str) -> Credentials:
        with self._lock:
            try:
                return self._records[app_id]
            except KeyError:
                raise UnknownIdentityError(app_id) from None

    def save_tokens(
        self,
        app_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: float,
    ) -> None:
        self._update(app_id, access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)

    def clear_tokens(self, app_id: str) -> None:
        self._update(app_id, access_token=None, refresh_token=None, expires_at=None)

    def invalidate_access_token(self, app_id: str) -> None:
        self._update(app_id, access_token=None, expires_at=None)

    def _update(self, app_id: str, **changes: Any) -> None:
        with self._lock:
            current = self._records.get(app_id)
            if current is None:
                raise UnknownIdentityError(app_id)
            self._records[app_id] = replace(current, **changes)


# =============================================================================
# Token Manager
# =============================================================================


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by the token or refresh endpoint."""

    access_token: str
    refresh_token: str | None
    expires_in: int


class TokenManager:
    """
    Obtains, refreshes and invalidates access tokens of every identity.

    Resolution is serialized per identity, so concurrent calls for the same
    app id trigger at most one network authentication; different identities
    never wait on each other.

    Args:
        account_store: Where credential records live.
        http_client: Transport for the token endpoints.
        base_url: Base URL of the LingXing open API.
        access_token_path: Path of the token issuance endpoint.
        refresh_token_path: Path of the token refresh endpoint.
        default_token_lifetime: Lifetime in seconds when the server omits `expires_in`.
        request_timeout: Timeout in seconds of the token requests.
    """

    DEFAULT_ACCESS_TOKEN_PATH = "/api/auth-server/oauth/access-token"
    DEFAULT_REFRESH_TOKEN_PATH = "/api/auth-server/oauth/refresh"
    DEFAULT_TOKEN_LIFETIME = 7199

    def __init__(
        self,
        account_store: AccountStore,
        http_client: HttpClient | None = None,
        base_url: str = "https://openapi.lingxing.com",
        access_token_path: str = DEFAULT_ACCESS_TOKEN_PATH,
        refresh_token_path: str = DEFAULT_REFRESH_TOKEN_PATH,
        default_token_lifetime: int = DEFAULT_TOKEN_LIFETIME,
        request_timeout: int = 30,
    ):
        assert account_store is not None, "account_store cannot be None"
        assert base_url, "base_url cannot be empty"
        assert default_token_lifetime > 0, "default_token_lifetime must be greater than 0"

        self.account_store = account_store
        self.http_client = http_client or RequestsHttpClient()
        self.base_url = base_url.rstrip("/")
        self.access_token_path = access_token_path
        self.refresh_token_path = refresh_token_path
        self.default_token_lifetime = default_token_lifetime
        self.request_timeout = request_timeout

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(
        cls,
        account_store: AccountStore,
        http_client: HttpClient | None = None,
        config: LXAPIConfig | None = None,
        base_url: str | None = None,
    ) -> TokenManager:
        """Create a TokenManager from LXAPIConfig (defaults to LXAPI.config)."""
        if config is None:
            from lxapi._config import LXAPI

            config = LXAPI.config

        return cls(
            account_store=account_store,
            http_client=http_client,
            base_url=base_url or config.client.base_url,
            access_token_path=config.auth.access_token_path,
            refresh_token_path=config.auth.refresh_token_path,
            default_token_lifetime=config.auth.default_token_lifetime,
            request_timeout=config.auth.request_timeout,
        )

    def get_access_token(self, app_id: str) -> str:
        """
        Return a usable access token for app_id, fetching one if necessary.

        Raises:
            UnknownIdentityError: If the store has no record for app_id.
            LingXingApiError: If the vendor rejects full authentication.
            AuthenticationError: If the token endpoint is unreachable or answers garbage.
        """
        with self._lock_for(app_id):
            creds = self.account_store.get(app_id)
            state = creds.state()

            if state is CredentialState.VALID:
                assert creds.access_token is not None  # for type checker
                return creds.access_token

            if state is CredentialState.EXPIRED:
                logger.debug(f"{app_id} | LX | Access token expired. Refreshing...")
                try:
                    return self.refresh(creds)
                except (LingXingApiError, AuthenticationError) as e:
                    logger.warning(
                        f"{app_id} | LX | ⚠️ Token refresh failed ({e}). Falling back to full authentication."
                    )
                    creds = self.account_store.get(app_id)

            return self.authenticate(creds)

    def refresh(self, creds: Credentials) -> str:
        """
        Exchange the refresh token for a new access token.

        A refresh token rejected as expired/invalid clears the whole record,
        so later calls re-authenticate from the app secret.
        """
        if not creds.refresh_token:
            raise AuthenticationError(f"No refresh token available for app id '{creds.app_id}'")

        try:
            grant = self._request_token(
                self.refresh_token_path,
                {"appId": creds.app_id, "refreshToken": creds.refresh_token},
            )
        except LingXingApiError as e:
            if e.is_refresh_token_invalid:
                logger.warning(f"{creds.app_id} | LX | Refresh token rejected ({e.code}). Clearing credentials.")
                self.account_store.clear_tokens(creds.app_id)
            raise

        self._save(creds, grant)
        logger.info(f"{creds.app_id} | LX | 🔑 Access token refreshed (expires in {grant.expires_in}s).")
        return grant.access_token

    def authenticate(self, creds: Credentials) -> str:
        """Obtain a brand new access token with the app secret."""
        grant = self._request_token(
            self.access_token_path,
            {"appId": creds.app_id, "appSecret": creds.app_secret},
        )
        self._save(creds, grant)
        logger.info(f"{creds.app_id} | LX | 🔑 Access token obtained (expires in {grant.expires_in}s).")
        return grant.access_token

    def invalidate(self, app_id: str) -> None:
        """Discard the cached access token of app_id (the refresh token is kept)."""
        logger.debug(f"{app_id} | LX | Invalidating cached access token.")
        self.account_store.invalidate_access_token(app_id)

    def _save(self, creds: Credentials, grant: TokenGrant) -> None:
        self.account_store.save_tokens(
            creds.app_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or creds.refresh_token,
            expires_at=time.time() + grant.expires_in,
        )

    def _request_token(self, path: str, form: dict[str, str]) -> TokenGrant:
        """
        POST a form to a token endpoint and parse the granted tokens.

        Raises:
            LingXingApiError: If the body carries a non-success vendor code.
            AuthenticationError: On transport errors or malformed responses.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.http_client.post_form(url, data=form, timeout=self.request_timeout)
        except requests.RequestException as e:
            raise AuthenticationError(f"Failed to reach token endpoint {path}: {e}", cause=e) from e

        try:
            body = response.json()
        except ValueError as e:
            raise AuthenticationError(
                f"Invalid token response from {path} (HTTP {response.status_code}): not JSON",
                cause=e,
            ) from e

        if not isinstance(body, dict):
            raise AuthenticationError(f"Invalid token response from {path}: expected a JSON object")

        code = body.get("code")
        if code is not None and code != "" and not is_success_code(code, (200, "200")):
            raise LingXingApiError.from_code(code, response=body, request=f"POST {url}")

        if not response.ok:
            raise AuthenticationError(f"Failed to obtain access token from {path} (HTTP {response.status_code})")

        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise AuthenticationError(f"Invalid token response from {path}: 'data' is not a JSON object")
        access_token = data.get("access_token")
        if not access_token:
            raise AuthenticationError(f"Invalid token response from {path}: missing 'access_token' field")

        try:
            expires_in = int(data.get("expires_in") or self.default_token_lifetime)
        except (TypeError, ValueError) as e:
            raise AuthenticationError(
                f"Invalid token response from {path}: bad 'expires_in' value {data.get('expires_in')!r}",
                cause=e,
            ) from e

        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
        )

    def _lock_for(self, app_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(app_id)
            if lock is None:
                lock = self._locks[app_id] = threading.Lock()
            return lock
