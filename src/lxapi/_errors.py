"""
Error taxonomy for the LingXing open API.

Every vendor error code the client knows about is described by an ErrorInfo
entry in a static registry. Codes are normalized to strings at the boundary,
so `3001008` and `"3001008"` resolve to the same entry.

Example:
    >>> from lxapi._errors import LingXingApiError
    >>> error = LingXingApiError.from_code(2001003)
    >>> error.retryable, error.should_refresh_token
    (True, True)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

RATE_LIMIT_CODE = "3001008"

# Refresh token rejected: the whole credential record must be cleared.
REFRESH_TOKEN_INVALID_CODES = frozenset({"2001008", "2001009"})

DEFAULT_SUCCESS_CODES: tuple[int | str, ...] = (0, 200, "200")


@dataclass(frozen=True)
class ErrorInfo:
    """
    Static description of a vendor error code.

    Attributes:
        code: Vendor error code (canonical string form).
        message: Short human message.
        description: What the code means.
        action: What an operator should do about it.
        retryable: Whether the call may be transparently retried.
        should_refresh_token: Whether the cached access token must be discarded.
        retry_after: Suggested wait in seconds before retrying (rate limit only).
    """

    code: str
    message: str
    description: str
    action: str
    retryable: bool = False
    should_refresh_token: bool = False
    retry_after: float | None = None


ERROR_CODES: dict[str, ErrorInfo] = {
    info.code: info
    for info in (
        # Authentication
        ErrorInfo("2001001", "appId does not exist", "The appId is unknown to the vendor.",
                  "Check that app_key is configured correctly."),
        ErrorInfo("2001002", "appSecret is incorrect", "The appSecret does not match the appId.",
                  "Check that app_secret is configured correctly."),
        ErrorInfo("2001003", "access_token missing or expired",
                  "The token does not exist or has expired; refresh it and retry.",
                  "Refresh the access token and retry.",
                  retryable=True, should_refresh_token=True),
        ErrorInfo("2001004", "API not authorized", "The requested API is not authorized for this app.",
                  "Ask the vendor to grant access to the API."),
        ErrorInfo("2001005", "access_token is incorrect", "The access_token value is invalid.",
                  "Obtain a new access token.",
                  should_refresh_token=True),
        ErrorInfo("2001006", "Invalid signature", "The request signature does not match.",
                  "Check signature generation and URL encoding."),
        ErrorInfo("2001007", "Signature expired", "The signature timestamp is too old; re-issue the request.",
                  "Regenerate the signature and retry.",
                  retryable=True),
        ErrorInfo("2001008", "refresh_token expired", "The refresh token has expired.",
                  "Obtain a new access token.",
                  should_refresh_token=True),
        ErrorInfo("2001009", "refresh_token invalid", "The refresh token value is invalid.",
                  "Obtain a new refresh token."),
        # Request errors
        ErrorInfo("400", "Invalid parameters", "Request parameters are malformed.",
                  "Check the request parameters; see error_details."),
        ErrorInfo("500", "Internal error", "The vendor reported an internal error.",
                  "See error_details; contact support if it persists."),
        ErrorInfo("3001001", "Missing required parameters",
                  "access_token, sign, timestamp and app_key are mandatory.",
                  "Check that the common parameters are present in the query string."),
        ErrorInfo("3001002", "IP not whitelisted", "The caller IP is not on the app whitelist.",
                  "Add the IP address to the whitelist in the ERP."),
        ErrorInfo(RATE_LIMIT_CODE, "Too many requests", "The endpoint rate limit was triggered.",
                  "Lower the request rate and retry later.",
                  retryable=True, retry_after=2.0),
    )
}


def normalize_code(code: Any) -> str:
    """Return the canonical (string) form of a vendor status code."""
    return str(code).strip()


def get_error_info(code: Any) -> ErrorInfo:
    """
    Look up the registry entry for a vendor code.

    Unknown codes map to a non-retryable "unknown error" entry.
    """
    normalized = normalize_code(code)
    info = ERROR_CODES.get(normalized)
    if info is not None:
        return info
    return ErrorInfo(
        code=normalized,
        message="Unknown error",
        description="Unknown error code",
        action="Contact technical support.",
    )


def is_known_code(code: Any) -> bool:
    """Return True if the code has an entry in the registry."""
    return normalize_code(code) in ERROR_CODES


def is_success_code(code: Any, success_codes: tuple[int | str, ...] = DEFAULT_SUCCESS_CODES) -> bool:
    """Return True if `code` denotes success (`0`, `200` or any caller-supplied code)."""
    normalized = normalize_code(code)
    if normalized in ("0", "200"):
        return True
    return normalized in {normalize_code(c) for c in success_codes}


class LingXingApiError(Exception):
    """
    A classified error from the LingXing open API (or the local rate limiter).

    Carries the retry policy metadata of its registry entry as explicit
    attributes so callers can branch on them without inspecting codes.

    Attributes:
        code: Canonical vendor code.
        message: Human message.
        description: What the code means.
        action: Suggested operator action.
        retryable: Whether the client may retry the call.
        should_refresh_token: Whether the cached access token must be discarded.
        retry_after: Suggested delay in seconds before retrying, if any.
        response: Parsed response body that carried the code, if any.
        request: Masked description of the request that failed, if known.

    Example:
        >>> try:
        ...     client.get("my-app-id", "/erp/sc/data/mws/orders")
        ... except LingXingApiError as e:
        ...     print(e.code, e.message, e.request)
    """

    def __init__(
        self,
        info: ErrorInfo,
        response: dict[str, Any] | None = None,
        request: str | None = None,
    ):
        super().__init__(f"[{info.code}] {info.message}")
        self.info = info
        self.code = info.code
        self.message = info.message
        self.description = info.description
        self.action = info.action
        self.retryable = info.retryable
        self.should_refresh_token = info.should_refresh_token
        self.retry_after = info.retry_after
        self.response = response
        self.request = request

    @property
    def is_rate_limit(self) -> bool:
        """True if this error is the rate-limit code (local or vendor-reported)."""
        return self.code == RATE_LIMIT_CODE

    @property
    def is_refresh_token_invalid(self) -> bool:
        """True if the vendor rejected the refresh token itself."""
        return self.code in REFRESH_TOKEN_INVALID_CODES

    @classmethod
    def from_code(
        cls,
        code: Any,
        response: dict[str, Any] | None = None,
        request: str | None = None,
    ) -> LingXingApiError:
        """Build an error from a vendor code through the registry."""
        return cls(get_error_info(code), response=response, request=request)


class RateLimitedError(LingXingApiError):
    """
    Raised when the local admission controller denies a call.

    Synthetic (never seen on the wire) and always retryable; `retry_after`
    holds the suggested wait before trying again.

    Attributes:
        identity: The app id whose bucket was exhausted.
        endpoint: The endpoint whose bucket was exhausted.
    """

    def __init__(self, identity: str, endpoint: str, retry_after: float | None = None):
        info = ERROR_CODES[RATE_LIMIT_CODE]
        super().__init__(info)
        self.identity = identity
        self.endpoint = endpoint
        if retry_after is not None:
            self.retry_after = retry_after
        self.local = True
        self.args = (f"[{self.code}] {self.message}: no admission slot for {endpoint}",)


def classify_response(
    body: Any,
    success_codes: tuple[int | str, ...] = DEFAULT_SUCCESS_CODES,
) -> LingXingApiError | None:
    """
    Classify a parsed response body.

    Returns None when the call succeeded (or the body carries no `code`
    field at all), otherwise the classified error.

    Example:
        >>> classify_response({"code": 0, "data": []}) is None
        True
        >>> classify_response({"code": "3001008"}).retryable
        True
    """
    if not isinstance(body, dict) or "code" not in body or body["code"] is None:
        return None
    code = body["code"]
    if is_success_code(code, success_codes):
        return None
    return LingXingApiError.from_code(code, response=body)
