"""
Utility functions for the lxapi client.

These functions are internal helpers and are not part of the public API.
"""

from __future__ import annotations

import logging
import random
import time

logger = logging.getLogger(__name__)


def sleep_with_jitter(seconds: float, jitter_factor: float = 0.1) -> None:
    """
    Sleep for the given duration with random jitter.

    Adds random extra time to the sleep duration so that concurrent callers
    backing off from the same rate limit do not wake up in lockstep. Jitter
    only lengthens the sleep, so a server-requested wait is never undercut.

    Args:
        seconds: Minimum sleep duration in seconds.
        jitter_factor: Maximum percentage added (default: 10%).

    Example:
        >>> sleep_with_jitter(2.0)  # Sleeps between 2.0 and 2.2 seconds
    """
    if seconds <= 0:
        return
    jitter = random.uniform(0.0, max(0.0, jitter_factor))
    sleep_time = seconds * (1 + jitter)
    time.sleep(sleep_time)


def mask_secret(value: str | None) -> str:
    """
    Mask a secret (token, app secret, signature) for logs and diagnostics.

    Long values keep their first and last 4 characters, short values only
    their last third.

    Examples:
        >>> mask_secret("super-secret-key")
        'supe********-key'
        >>> mask_secret("short")
        '********t'
    """
    if value is None:
        return "None"
    secret = str(value)
    if len(secret) >= 12:
        return f"{secret[:4]}********{secret[-4:]}"
    if len(secret) >= 3:
        visible = max(1, len(secret) // 3)
        return f"********{secret[-visible:]}"
    return "********"
