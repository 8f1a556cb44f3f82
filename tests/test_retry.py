"""Tests for the retry loop."""

import unittest
from unittest.mock import patch

from lxapi._errors import LingXingApiError, RateLimitedError
from lxapi._retry import RetryAttempt, Retrying


def _run(retrying, outcomes):
    """Drive a Retrying loop; each outcome is either a value or an exception to raise."""
    calls = []
    for attempt in retrying:
        with attempt as ctx:
            calls.append(ctx)
            outcome = outcomes[len(calls) - 1]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome, calls
    raise AssertionError("unreachable")


class TestRetryAttempt(unittest.TestCase):
    """Tests for RetryAttempt dataclass."""

    def test_is_last_attempt(self):
        """Should be last when attempt_number reaches max_retries."""
        self.assertFalse(RetryAttempt(attempt_number=0, max_retries=2).is_last_attempt)
        self.assertTrue(RetryAttempt(attempt_number=2, max_retries=2).is_last_attempt)

    def test_is_frozen(self):
        """Should be immutable."""
        attempt = RetryAttempt(attempt_number=0, max_retries=1)
        with self.assertRaises(AttributeError):
            attempt.attempt_number = 1  # type: ignore


class TestRetryingInit(unittest.TestCase):
    """Tests for Retrying construction."""

    def test_rejects_negative_max_retries(self):
        """Should raise AssertionError for negative max_retries."""
        with self.assertRaises(AssertionError):
            Retrying(max_retries=-1)

    def test_rejects_negative_backoff(self):
        """Should raise AssertionError for negative backoff_factor."""
        with self.assertRaises(AssertionError):
            Retrying(backoff_factor=-0.1)


@patch("lxapi._retry.sleep_with_jitter")
class TestRetrying(unittest.TestCase):
    """Tests for the retry decisions."""

    def test_success_on_first_attempt(self, mock_sleep):
        """Should run once and not sleep."""
        result, calls = _run(Retrying(max_retries=2), ["ok"])
        self.assertEqual(result, "ok")
        self.assertEqual(len(calls), 1)
        mock_sleep.assert_not_called()

    def test_retryable_error_is_retried_immediately(self, mock_sleep):
        """Should retry 2001007 without waiting."""
        result, calls = _run(Retrying(max_retries=2), [LingXingApiError.from_code(2001007), "ok"])
        self.assertEqual(result, "ok")
        self.assertEqual([c.attempt_number for c in calls], [0, 1])
        mock_sleep.assert_not_called()

    def test_non_retryable_error_propagates_immediately(self, mock_sleep):
        """Should not retry 2001006."""
        retrying = Retrying(max_retries=3)
        with self.assertRaises(LingXingApiError) as ctx:
            _run(retrying, [LingXingApiError.from_code(2001006), "never"])
        self.assertEqual(ctx.exception.code, "2001006")
        self.assertEqual(retrying.attempts_made, 1)

    def test_foreign_exceptions_propagate(self, mock_sleep):
        """Should not retry exceptions that are not classified errors."""
        retrying = Retrying(max_retries=3)
        with self.assertRaises(ValueError):
            _run(retrying, [ValueError("boom"), "never"])
        self.assertEqual(retrying.attempts_made, 1)

    def test_exhaustion_reraises_last_classified_error(self, mock_sleep):
        """Should make max_retries + 1 attempts and re-raise the last error unchanged."""
        errors = [LingXingApiError.from_code(2001003) for _ in range(3)]
        retrying = Retrying(max_retries=2)

        with self.assertRaises(LingXingApiError) as ctx:
            _run(retrying, errors)

        self.assertIs(ctx.exception, errors[-1])
        self.assertEqual(retrying.attempts_made, 3)

    def test_zero_retries_means_single_attempt(self, mock_sleep):
        """Should never retry with max_retries=0."""
        retrying = Retrying(max_retries=0)
        with self.assertRaises(LingXingApiError):
            _run(retrying, [LingXingApiError.from_code(2001007), "never"])
        self.assertEqual(retrying.attempts_made, 1)

    def test_rate_limit_waits_retry_after(self, mock_sleep):
        """Should wait the suggested retry_after before retrying 3001008."""
        _run(Retrying(max_retries=1), [LingXingApiError.from_code(3001008), "ok"])
        mock_sleep.assert_called_once_with(2.0)

    def test_local_rate_limit_uses_its_retry_after(self, mock_sleep):
        """Should honour the retry_after of a local denial."""
        _run(Retrying(max_retries=1), [RateLimitedError("app", "/x", retry_after=0.5), "ok"])
        mock_sleep.assert_called_once_with(0.5)

    def test_retry_after_is_capped(self, mock_sleep):
        """Should not wait longer than MAX_RETRY_AFTER."""
        error = RateLimitedError("app", "/x", retry_after=600.0)
        _run(Retrying(max_retries=1), [error, "ok"])
        mock_sleep.assert_called_once_with(Retrying.MAX_RETRY_AFTER)

    def test_backoff_factor(self, mock_sleep):
        """Should apply exponential backoff when configured."""
        _run(
            Retrying(max_retries=3, backoff_factor=0.5),
            [LingXingApiError.from_code(2001007), LingXingApiError.from_code(2001007), "ok"],
        )
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [0.5, 1.0])

    def test_logs_retry_with_prefix(self, mock_sleep):
        """Should log retries with the given prefix."""
        with self.assertLogs("lxapi._retry", level="WARNING") as logs:
            _run(Retrying(max_retries=1, logger_prefix="app | LX"), [LingXingApiError.from_code(2001007), "ok"])
        self.assertTrue(any("app | LX | Attempt 1/2 failed" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
