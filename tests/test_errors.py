"""Tests for the error registry and response classification."""

import pytest

from lxapi._errors import (
    ERROR_CODES,
    RATE_LIMIT_CODE,
    LingXingApiError,
    RateLimitedError,
    classify_response,
    get_error_info,
    is_known_code,
    is_success_code,
    normalize_code,
)


class TestRegistry:
    """Tests for the static error registry."""

    @pytest.mark.parametrize("code", [2001003, 2001007, 3001008])
    def test_retryable_codes(self, code):
        assert get_error_info(code).retryable is True

    @pytest.mark.parametrize("code", [2001001, 2001002, 2001004, 2001005, 2001006, 2001008, 2001009, 400, 500])
    def test_non_retryable_codes(self, code):
        assert get_error_info(code).retryable is False

    def test_refresh_flags(self):
        assert get_error_info(2001003).should_refresh_token is True
        assert get_error_info(2001005).should_refresh_token is True
        assert get_error_info(2001008).should_refresh_token is True
        assert get_error_info(2001006).should_refresh_token is False

    def test_rate_limit_has_retry_after(self):
        assert get_error_info(RATE_LIMIT_CODE).retry_after == 2.0

    def test_int_and_str_codes_resolve_to_same_entry(self):
        assert get_error_info(3001008) is get_error_info("3001008")
        assert get_error_info(" 3001008 ") is ERROR_CODES["3001008"]

    def test_unknown_code_maps_to_unknown_error(self):
        info = get_error_info(999999)

        assert info.code == "999999"
        assert info.message == "Unknown error"
        assert info.retryable is False
        assert info.should_refresh_token is False
        assert is_known_code(999999) is False

    def test_normalize_code(self):
        assert normalize_code(200) == "200"
        assert normalize_code("0") == "0"


class TestIsSuccessCode:
    """Tests for is_success_code()."""

    @pytest.mark.parametrize("code", [0, "0", 200, "200"])
    def test_default_success_codes(self, code):
        assert is_success_code(code) is True

    def test_zero_and_200_always_succeed(self):
        assert is_success_code(0, success_codes=("1",)) is True
        assert is_success_code("200", success_codes=()) is True

    def test_custom_success_codes(self):
        assert is_success_code(1, success_codes=(1,)) is True
        assert is_success_code("1", success_codes=(1,)) is True
        assert is_success_code(1) is False


class TestLingXingApiError:
    """Tests for LingXingApiError."""

    def test_carries_registry_metadata(self):
        body = {"code": 2001003, "message": "token expired"}
        error = LingXingApiError.from_code(2001003, response=body, request="curl -X GET 'x'")

        assert error.code == "2001003"
        assert error.retryable is True
        assert error.should_refresh_token is True
        assert error.response is body
        assert error.request == "curl -X GET 'x'"
        assert str(error) == "[2001003] access_token missing or expired"

    def test_is_rate_limit(self):
        assert LingXingApiError.from_code(3001008).is_rate_limit is True
        assert LingXingApiError.from_code(2001003).is_rate_limit is False

    def test_is_refresh_token_invalid(self):
        assert LingXingApiError.from_code(2001008).is_refresh_token_invalid is True
        assert LingXingApiError.from_code("2001009").is_refresh_token_invalid is True
        assert LingXingApiError.from_code(2001005).is_refresh_token_invalid is False


class TestRateLimitedError:
    """Tests for the local admission denial error."""

    def test_is_retryable_rate_limit_error(self):
        error = RateLimitedError("app", "https://h/erp/sc/x", retry_after=0.5)

        assert isinstance(error, LingXingApiError)
        assert error.code == RATE_LIMIT_CODE
        assert error.retryable is True
        assert error.is_rate_limit is True
        assert error.retry_after == 0.5
        assert error.local is True
        assert error.identity == "app"
        assert error.endpoint == "https://h/erp/sc/x"
        assert "https://h/erp/sc/x" in str(error)

    def test_defaults_to_registry_retry_after(self):
        assert RateLimitedError("app", "/x").retry_after == 2.0


class TestClassifyResponse:
    """Tests for classify_response()."""

    @pytest.mark.parametrize(
        "body",
        [
            {"code": 0, "data": []},
            {"code": "0"},
            {"code": 200},
            {"code": "200"},
            {"data": []},
            {"code": None},
            [],
            "ok",
        ],
    )
    def test_success(self, body):
        assert classify_response(body) is None

    def test_custom_success_code(self):
        assert classify_response({"code": 1}, success_codes=(1,)) is None

    def test_known_error(self):
        body = {"code": "3001008", "message": "Too many requests"}

        error = classify_response(body)

        assert error is not None
        assert error.is_rate_limit
        assert error.response is body

    def test_unknown_error(self):
        error = classify_response({"code": 123})

        assert error is not None
        assert error.code == "123"
        assert error.retryable is False
