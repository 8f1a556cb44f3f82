"""Tests for credentials, account stores and the token manager."""

import threading
import time
import unittest
from unittest.mock import MagicMock, Mock, patch

import requests

from lxapi._auth import (
    AuthenticationError,
    Credentials,
    CredentialState,
    InMemoryAccountStore,
    TokenManager,
    UnknownIdentityError,
)
from lxapi._config import LXAPIConfig
from lxapi._errors import LingXingApiError
from lxapi._http import HttpClient

BASE_URL = "https://openapi.lingxing.com"
TOKEN_URL = f"{BASE_URL}/api/auth-server/oauth/access-token"
REFRESH_URL = f"{BASE_URL}/api/auth-server/oauth/refresh"


def _response(body, status_code=200):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


def _token_body(access_token="new-access", refresh_token="new-refresh", expires_in=7199):
    data = {"access_token": access_token, "refresh_token": refresh_token}
    if expires_in is not None:
        data["expires_in"] = expires_in
    return {"code": "200", "msg": "OK", "data": data}


class TestCredentials(unittest.TestCase):
    """Tests for the Credentials snapshot."""

    def test_valid_while_before_expiry(self):
        """Should be VALID strictly before expires_at."""
        creds = Credentials("app", "secret", access_token="tok", expires_at=100.0)
        self.assertEqual(creds.state(now=99.9), CredentialState.VALID)
        self.assertTrue(creds.has_valid_access_token(now=99.9))

    def test_expired_at_expiry_with_refresh_token(self):
        """Should be EXPIRED at expires_at when a refresh token exists."""
        creds = Credentials("app", "secret", access_token="tok", refresh_token="ref", expires_at=100.0)
        self.assertEqual(creds.state(now=100.0), CredentialState.EXPIRED)

    def test_absent_without_tokens(self):
        """Should be ABSENT when nothing usable is cached."""
        self.assertEqual(Credentials("app", "secret").state(), CredentialState.ABSENT)
        creds = Credentials("app", "secret", access_token="tok", expires_at=100.0)
        self.assertEqual(creds.state(now=200.0), CredentialState.ABSENT)

    def test_token_without_expiry_is_not_valid(self):
        """Should not trust an access token with no expiry."""
        creds = Credentials("app", "secret", access_token="tok", refresh_token="ref")
        self.assertEqual(creds.state(), CredentialState.EXPIRED)

    def test_repr_masks_secrets(self):
        """Should not leak secrets in repr."""
        creds = Credentials("app", "super-secret-value", access_token="access-token-value")
        text = repr(creds)
        self.assertNotIn("super-secret-value", text)
        self.assertNotIn("access-token-value", text)
        self.assertIn("app", text)


class TestInMemoryAccountStore(unittest.TestCase):
    """Tests for InMemoryAccountStore."""

    def setUp(self):
        self.store = InMemoryAccountStore([Credentials("app", "secret")])

    def test_get_unknown_identity_raises(self):
        """Should raise UnknownIdentityError (a KeyError)."""
        with self.assertRaises(UnknownIdentityError) as ctx:
            self.store.get("nobody")
        self.assertIsInstance(ctx.exception, KeyError)
        self.assertIn("nobody", str(ctx.exception))

    def test_save_tokens(self):
        """Should overwrite the three token fields."""
        self.store.save_tokens("app", "a", "r", 123.0)
        creds = self.store.get("app")
        self.assertEqual((creds.access_token, creds.refresh_token, creds.expires_at), ("a", "r", 123.0))
        self.assertEqual(creds.app_secret, "secret")

    def test_clear_tokens(self):
        """Should null out the three token fields."""
        self.store.save_tokens("app", "a", "r", 123.0)
        self.store.clear_tokens("app")
        creds = self.store.get("app")
        self.assertIsNone(creds.access_token)
        self.assertIsNone(creds.refresh_token)
        self.assertIsNone(creds.expires_at)

    def test_invalidate_access_token_keeps_refresh_token(self):
        """Should drop the access token but keep the refresh token."""
        self.store.save_tokens("app", "a", "r", 123.0)
        self.store.invalidate_access_token("app")
        creds = self.store.get("app")
        self.assertIsNone(creds.access_token)
        self.assertIsNone(creds.expires_at)
        self.assertEqual(creds.refresh_token, "r")

    def test_update_unknown_identity_raises(self):
        """Should raise UnknownIdentityError on writes to unknown identities."""
        with self.assertRaises(UnknownIdentityError):
            self.store.clear_tokens("nobody")

    def test_add_rejects_empty_secret(self):
        """Should require an app secret."""
        with self.assertRaises(AssertionError):
            self.store.add(Credentials("other", ""))


class TestTokenManagerResolution(unittest.TestCase):
    """Tests for TokenManager.get_access_token() state machine."""

    def setUp(self):
        self.store = InMemoryAccountStore([Credentials("app", "secret")])
        self.http = Mock(spec=HttpClient)
        self.manager = TokenManager(account_store=self.store, http_client=self.http)

    def test_valid_token_is_reused_without_network(self):
        """Should return the cached token when VALID."""
        self.store.save_tokens("app", "cached", "ref", time.time() + 600)

        self.assertEqual(self.manager.get_access_token("app"), "cached")
        self.http.post_form.assert_not_called()

    @patch("lxapi._auth.time.time", return_value=1_000.0)
    def test_absent_authenticates_with_secret(self, _mock_time):
        """Should POST appId/appSecret and persist the granted tokens."""
        self.http.post_form.return_value = _response(_token_body(expires_in=3600))

        token = self.manager.get_access_token("app")

        self.assertEqual(token, "new-access")
        self.http.post_form.assert_called_once_with(
            TOKEN_URL, data={"appId": "app", "appSecret": "secret"}, timeout=30
        )
        creds = self.store.get("app")
        self.assertEqual(creds.access_token, "new-access")
        self.assertEqual(creds.refresh_token, "new-refresh")
        self.assertEqual(creds.expires_at, 4_600.0)

    @patch("lxapi._auth.time.time", return_value=1_000.0)
    def test_missing_expires_in_uses_default_lifetime(self, _mock_time):
        """Should fall back to 7199 seconds."""
        self.http.post_form.return_value = _response(_token_body(expires_in=None))

        self.manager.get_access_token("app")

        self.assertEqual(self.store.get("app").expires_at, 1_000.0 + 7199)

    def test_expired_refreshes_with_refresh_token(self):
        """Should POST appId/refreshToken when EXPIRED."""
        self.store.save_tokens("app", "old", "old-refresh", time.time() - 1)
        self.http.post_form.return_value = _response(_token_body(access_token="refreshed"))

        token = self.manager.get_access_token("app")

        self.assertEqual(token, "refreshed")
        self.http.post_form.assert_called_once_with(
            REFRESH_URL, data={"appId": "app", "refreshToken": "old-refresh"}, timeout=30
        )

    def test_refresh_without_new_refresh_token_keeps_old_one(self):
        """Should keep the previous refresh token when the grant has none."""
        self.store.save_tokens("app", "old", "old-refresh", time.time() - 1)
        self.http.post_form.return_value = _response(_token_body(refresh_token=None))

        self.manager.get_access_token("app")

        self.assertEqual(self.store.get("app").refresh_token, "old-refresh")

    def test_refresh_transport_failure_falls_back_to_authentication(self):
        """Should authenticate with the secret when the refresh call fails."""
        self.store.save_tokens("app", "old", "old-refresh", time.time() - 1)
        self.http.post_form.side_effect = [
            requests.ConnectionError("boom"),
            _response(_token_body(access_token="fresh")),
        ]

        token = self.manager.get_access_token("app")

        self.assertEqual(token, "fresh")
        urls = [c.args[0] for c in self.http.post_form.call_args_list]
        self.assertEqual(urls, [REFRESH_URL, TOKEN_URL])

    def test_refresh_with_non_object_data_falls_back_to_authentication(self):
        """Should authenticate with the secret when the refresh grant's data is not an object."""
        self.store.save_tokens("app", "old", "old-refresh", time.time() - 1)
        self.http.post_form.side_effect = [
            _response({"code": "200", "data": "oops"}),
            _response(_token_body(access_token="fresh")),
        ]

        token = self.manager.get_access_token("app")

        self.assertEqual(token, "fresh")
        urls = [c.args[0] for c in self.http.post_form.call_args_list]
        self.assertEqual(urls, [REFRESH_URL, TOKEN_URL])

    def test_rejected_refresh_token_clears_record_then_authenticates(self):
        """Should clear all tokens on 2001008 and re-authenticate."""
        self.store.save_tokens("app", "old", "dead-refresh", time.time() - 1)
        self.http.post_form.side_effect = [
            _response({"code": 2001008, "msg": "refresh_token expired", "data": None}),
            _response(_token_body(access_token="fresh", refresh_token=None)),
        ]

        token = self.manager.get_access_token("app")

        self.assertEqual(token, "fresh")
        creds = self.store.get("app")
        self.assertEqual(creds.access_token, "fresh")
        self.assertIsNone(creds.refresh_token)

    def test_refresh_rejection_clears_tokens(self):
        """refresh() should clear the record and re-raise on 2001009."""
        self.store.save_tokens("app", "old", "bad-refresh", time.time() - 1)
        self.http.post_form.return_value = _response({"code": "2001009", "msg": "invalid"})

        with self.assertRaises(LingXingApiError) as ctx:
            self.manager.refresh(self.store.get("app"))

        self.assertEqual(ctx.exception.code, "2001009")
        self.assertIsNone(self.store.get("app").refresh_token)

    def test_vendor_rejection_of_secret_raises_api_error(self):
        """Should surface a wrong secret as a classified error."""
        self.http.post_form.return_value = _response({"code": 2001002, "msg": "appSecret is incorrect"})

        with self.assertRaises(LingXingApiError) as ctx:
            self.manager.get_access_token("app")

        self.assertEqual(ctx.exception.code, "2001002")
        self.assertIn(TOKEN_URL, ctx.exception.request)
        self.assertIsNone(self.store.get("app").access_token)

    def test_network_failure_raises_authentication_error(self):
        """Should wrap transport errors in AuthenticationError."""
        cause = requests.ConnectionError("down")
        self.http.post_form.side_effect = cause

        with self.assertRaises(AuthenticationError) as ctx:
            self.manager.get_access_token("app")

        self.assertIs(ctx.exception.cause, cause)

    def test_non_json_response_raises_authentication_error(self):
        """Should reject responses that are not JSON."""
        response = _response(None, status_code=502)
        response.json.side_effect = ValueError("not json")
        self.http.post_form.return_value = response

        with self.assertRaises(AuthenticationError):
            self.manager.get_access_token("app")

    def test_non_object_data_raises_authentication_error(self):
        """Should reject grants whose data is not a JSON object."""
        self.http.post_form.return_value = _response({"code": "200", "data": "oops"})

        with self.assertRaises(AuthenticationError) as ctx:
            self.manager.get_access_token("app")

        self.assertIn("'data' is not a JSON object", str(ctx.exception))
        self.assertIsNone(self.store.get("app").access_token)

    def test_missing_access_token_raises_authentication_error(self):
        """Should reject grants without access_token."""
        self.http.post_form.return_value = _response({"code": 200, "data": {}})

        with self.assertRaises(AuthenticationError) as ctx:
            self.manager.get_access_token("app")

        self.assertIn("access_token", str(ctx.exception))

    def test_http_error_without_code_raises_authentication_error(self):
        """Should reject non-2xx responses that carry no vendor code."""
        self.http.post_form.return_value = _response({"error": "bad gateway"}, status_code=502)

        with self.assertRaises(AuthenticationError):
            self.manager.get_access_token("app")

    def test_unknown_identity_raises(self):
        """Should propagate UnknownIdentityError from the store."""
        with self.assertRaises(UnknownIdentityError):
            self.manager.get_access_token("nobody")

    def test_invalidate_forces_refresh_on_next_call(self):
        """Should refresh on the next call after invalidate()."""
        self.store.save_tokens("app", "cached", "ref", time.time() + 600)
        self.http.post_form.return_value = _response(_token_body(access_token="refreshed"))

        self.manager.invalidate("app")

        self.assertEqual(self.manager.get_access_token("app"), "refreshed")
        self.assertEqual(self.http.post_form.call_args.args[0], REFRESH_URL)


class TestTokenManagerConcurrency(unittest.TestCase):
    """Tests for per-identity serialization."""

    def test_concurrent_calls_authenticate_once(self):
        """Should issue a single token request for concurrent callers of one identity."""
        store = InMemoryAccountStore([Credentials("app", "secret")])
        http = Mock(spec=HttpClient)
        calls = []

        def slow_post(url, data, timeout=30):
            calls.append(url)
            time.sleep(0.05)
            return _response(_token_body())

        http.post_form.side_effect = slow_post
        manager = TokenManager(account_store=store, http_client=http)
        tokens = []
        threads = [threading.Thread(target=lambda: tokens.append(manager.get_access_token("app"))) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(calls), 1)
        self.assertEqual(tokens, ["new-access"] * 8)


class TestTokenManagerFromConfig(unittest.TestCase):
    """Tests for TokenManager.from_config()."""

    def test_uses_auth_section(self):
        """Should read paths, lifetime and timeout from config."""
        config = LXAPIConfig().with_section_overrides(
            client={"base_url": "https://example.test"},
            auth={"access_token_path": "/token", "default_token_lifetime": 60, "request_timeout": 5},
        )

        manager = TokenManager.from_config(InMemoryAccountStore(), config=config)

        self.assertEqual(manager.base_url, "https://example.test")
        self.assertEqual(manager.access_token_path, "/token")
        self.assertEqual(manager.default_token_lifetime, 60)
        self.assertEqual(manager.request_timeout, 5)


if __name__ == "__main__":
    unittest.main()
