"""
Bounded retry loop for classified API errors.

Inspired by Tenacity's Retrying class: iterate over attempts and run each one
inside a context manager that decides whether the raised error is retried.

Only LingXingApiError instances flagged `retryable` are retried. The
rate-limit code waits its suggested `retry_after` before the next attempt;
other retryable errors are re-issued immediately unless a backoff factor is
configured. When the attempts are exhausted the last error propagates
unchanged, so callers always see the classified error itself.

Example:
    >>> from lxapi._retry import Retrying
    >>> for attempt in Retrying(max_retries=2):
    ...     with attempt:
    ...         return do_call()
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass

from lxapi._errors import LingXingApiError
from lxapi._utils import sleep_with_jitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryAttempt:
    """
    Represents a single attempt.

    Attributes:
        attempt_number: Zero-based index of the current attempt (0 = first attempt).
        max_retries: Maximum number of retries configured.
    """

    attempt_number: int
    max_retries: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last attempt."""
        return self.attempt_number >= self.max_retries


class Retrying:
    """
    Context-manager based retry loop.

    Usage:
        >>> for attempt in Retrying(max_retries=2, logger_prefix="my-app-id | LX"):
        ...     with attempt:
        ...         return client_call()

    Args:
        max_retries: Maximum number of retries (default: 2). Use 0 to disable
            retries. Total attempts never exceed max_retries + 1.
        backoff_factor: Optional exponential backoff between retries
            (backoff_factor * 2 ** attempt). 0 disables it (default).
        logger_prefix: Prefix for log messages.

    Note:
        - Non-retryable errors (and anything that is not a LingXingApiError)
          propagate immediately.
        - On exhaustion the last error propagates unchanged.
    """

    # Upper bound for a server/registry suggested wait (in seconds).
    MAX_RETRY_AFTER = 60.0

    def __init__(
        self,
        max_retries: int = 2,
        backoff_factor: float = 0.0,
        logger_prefix: str = "",
    ):
        assert max_retries is not None, "max_retries cannot be None"
        assert max_retries >= 0, f"max_retries must be >= 0, got {max_retries}"
        assert backoff_factor >= 0, f"backoff_factor must be >= 0, got {backoff_factor}"

        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.logger_prefix = logger_prefix

        self._current_attempt = 0
        self._last_exception: Exception | None = None

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """Yield retry contexts for each attempt."""
        for attempt in range(self.max_retries + 1):
            self._current_attempt = attempt
            yield _RetryContext(self, attempt)

    @property
    def attempts_made(self) -> int:
        """Number of attempts started so far."""
        return self._current_attempt + 1

    def _should_retry(self, exception: Exception) -> bool:
        """Only classified errors flagged retryable are retried."""
        return isinstance(exception, LingXingApiError) and exception.retryable

    def _calculate_wait_time(self, exception: LingXingApiError) -> float:
        """
        Wait before the next attempt.

        Uses the larger of the error's suggested retry_after (rate limit only)
        and the exponential backoff.
        """
        base_wait = self.backoff_factor * (2 ** self._current_attempt)
        if exception.is_rate_limit and exception.retry_after:
            return float(max(min(exception.retry_after, self.MAX_RETRY_AFTER), base_wait))
        return base_wait

    def _handle_retry(self, exception: LingXingApiError) -> None:
        """Handle retry: log, sleep."""
        self._last_exception = exception
        sleep_time = self._calculate_wait_time(exception)
        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.warning(
            f"{prefix}Attempt {self._current_attempt + 1}/{self.max_retries + 1} failed: {exception}"
        )
        if sleep_time > 0:
            logger.warning(f"{prefix}Retrying in {sleep_time:.1f}s...")
            sleep_with_jitter(sleep_time)
        else:
            logger.warning(f"{prefix}Retrying now...")

    def _handle_exhausted(self, exception: Exception) -> None:
        self._last_exception = exception
        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.error(
            f"{prefix}Max retries ({self.max_retries}) exceeded. Last error: {exception}"
        )


class _RetryContext:
    """
    Context for a single attempt (internal).

    On success (no exception): exits normally; the caller returns/breaks.
    On retryable exception: suppresses it, the loop continues.
    On non-retryable exception or exhausted retries: re-raises it.
    """

    def __init__(self, retrying: Retrying, attempt: int):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return RetryAttempt(
            attempt_number=self.attempt,
            max_retries=self._retrying.max_retries,
        )

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        if exc_val is None:
            return False

        # Only handle Exception, not BaseException (KeyboardInterrupt, etc.)
        if not isinstance(exc_val, Exception):
            return False

        if not self._retrying._should_retry(exc_val):
            return False

        if self.attempt >= self._retrying.max_retries:
            if self._retrying.max_retries > 0:
                self._retrying._handle_exhausted(exc_val)
            return False

        assert isinstance(exc_val, LingXingApiError)  # for type checker
        self._retrying._handle_retry(exc_val)
        return True
