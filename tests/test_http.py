"""Tests for the HTTP transport."""

import unittest
from unittest.mock import MagicMock, Mock

import requests

from lxapi._http import HttpClient, RequestsHttpClient


class RecordingHttpClient(HttpClient):
    """HttpClient that records its calls."""

    def __init__(self):
        self.calls = []
        self.response = MagicMock(spec=requests.Response)

    def request(self, method, url, params=None, json=None, data=None, headers=None, timeout=30):
        self.calls.append(
            {"method": method, "url": url, "params": params, "json": json,
             "data": data, "headers": headers, "timeout": timeout}
        )
        return self.response


class TestHttpClient(unittest.TestCase):
    """Tests for the HttpClient base class."""

    def test_cannot_instantiate_abstract_class(self):
        """Should not be instantiable without request()."""
        with self.assertRaises(TypeError):
            HttpClient()  # type: ignore

    def test_post_form_sends_form_encoded_body(self):
        """Should POST the data as a form."""
        client = RecordingHttpClient()

        response = client.post_form("https://h/token", data={"appId": "a"}, timeout=5)

        self.assertIs(response, client.response)
        call = client.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(call["data"], {"appId": "a"})
        self.assertIsNone(call["json"])
        self.assertEqual(call["headers"]["Content-Type"], "application/x-www-form-urlencoded")
        self.assertEqual(call["timeout"], 5)


class TestRequestsHttpClient(unittest.TestCase):
    """Tests for RequestsHttpClient."""

    def test_delegates_to_session(self):
        """Should forward every argument to the session."""
        session = Mock(spec=requests.Session)
        client = RequestsHttpClient(session=session)

        client.request("post", "https://h/x", params={"a": 1}, json={"b": 2}, headers={"h": "v"}, timeout=7)

        session.request.assert_called_once_with(
            "POST",
            "https://h/x",
            params={"a": 1},
            json={"b": 2},
            data=None,
            headers={"h": "v"},
            timeout=7,
        )

    def test_creates_session_lazily(self):
        """Should create a session on first use and reuse it."""
        client = RequestsHttpClient()
        self.assertIsNone(client._session)

        first = client._get_session()
        second = client._get_session()

        self.assertIsInstance(first, requests.Session)
        self.assertIs(first, second)
        client.close()

    def test_rejects_empty_url(self):
        """Should raise AssertionError for an empty URL."""
        client = RequestsHttpClient(session=Mock(spec=requests.Session))
        with self.assertRaises(AssertionError):
            client.request("GET", "")

    def test_rejects_non_positive_timeout(self):
        """Should raise AssertionError for timeout <= 0."""
        client = RequestsHttpClient(session=Mock(spec=requests.Session))
        with self.assertRaises(AssertionError):
            client.request("GET", "https://h/x", timeout=0)

    def test_close_closes_session(self):
        """Should close the underlying session."""
        session = Mock(spec=requests.Session)
        RequestsHttpClient(session=session).close()
        session.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
