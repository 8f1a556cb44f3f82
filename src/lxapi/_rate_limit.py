"""
Per-endpoint admission control for the LingXing open API.

The vendor limits how many calls to one endpoint an app may have in flight
at the same time. AdmissionController mirrors that limit locally with one
token bucket per (app id, endpoint) pair. Unlike a refill-over-time bucket,
tokens are consumed when a call starts and returned when it ends, so each
bucket is an N-way semaphore that never blocks:

    - acquire() takes a token or fails immediately (no queueing).
    - release() gives the token back; it is idempotent.
    - A grant that is never released is reclaimed once its deadline
      (`grant_timeout`) passes, and by a periodic sweep as a second safety net.

Deadlines live in a heap serviced by a single background thread, so the
number of threads does not grow with the number of outstanding grants.

Example:
    >>> from lxapi._rate_limit import AdmissionController
    >>> controller = AdmissionController(capacity_table=(("/erp/sc/", 1),), default_capacity=5)
    >>> result = controller.acquire("my-app-id", "https://openapi.lingxing.com/erp/sc/data/mws/orders")
    >>> if result.granted:
    ...     try:
    ...         ...  # perform the call
    ...     finally:
    ...         controller.release("my-app-id", "https://openapi.lingxing.com/erp/sc/data/mws/orders", result.grant_id)
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field

from lxapi._config import CapacityTable, RateLimitConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class AdmissionResult:
    """
    Outcome of AdmissionController.acquire().

    Attributes:
        granted: Whether a slot was granted.
        grant_id: Handle to pass to release(); None when denied.
    """

    granted: bool
    grant_id: str | None = None


@dataclass
class Grant:
    """One consumed bucket slot."""

    grant_id: str
    issued_at: float
    deadline: float


@dataclass
class Bucket:
    """
    Concurrency ceiling for one (app id, endpoint) pair.

    Invariant: `available + len(grants) == capacity`.
    """

    capacity: int
    available: int
    grants: dict[str, Grant] = field(default_factory=dict)


@dataclass(frozen=True)
class BucketSnapshot:
    """Read-only view of a bucket, for diagnostics."""

    capacity: int
    available: int
    outstanding: int


# =============================================================================
# Admission Controller
# =============================================================================


class AdmissionController:
    """
    Fail-fast concurrency limiter keyed by (identity, endpoint).

    Thread-safe: every bucket mutation happens under a single lock. One
    daemon thread force-releases grants whose deadline passed and, when
    `sweep_interval` is set, runs the periodic sweep.

    Args:
        capacity_table: Ordered (substring pattern, capacity) pairs; the first
            pattern contained in the endpoint decides its capacity.
        default_capacity: Capacity for endpoints matched by no pattern.
        grant_timeout: Seconds after which an unreleased grant is force-released.
        sweep_interval: Seconds between periodic sweeps. None disables the sweep.
    """

    def __init__(
        self,
        capacity_table: CapacityTable = (),
        default_capacity: int = 10,
        grant_timeout: float = 120.0,
        sweep_interval: float | None = 60.0,
    ):
        assert capacity_table is not None, "capacity_table cannot be None."
        assert default_capacity is not None, "default_capacity cannot be None."
        assert default_capacity >= 1, "default_capacity must be at least 1."
        assert grant_timeout is not None, "grant_timeout cannot be None."
        assert grant_timeout > 0, "grant_timeout must be greater than 0."
        assert sweep_interval is None or sweep_interval > 0, "sweep_interval must be > 0 or None."

        self.capacity_table = tuple(capacity_table)
        self.default_capacity = default_capacity
        self.grant_timeout = grant_timeout
        self.sweep_interval = sweep_interval

        self._buckets: dict[tuple[str, str], Bucket] = {}
        # (deadline, grant_id, identity, endpoint); released grants are skipped lazily.
        self._deadlines: list[tuple[float, str, str, str]] = []
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._closed = threading.Event()

        self._worker = threading.Thread(
            target=self._run,
            name="lxapi-admission-reaper",
            daemon=True,
        )
        self._worker.start()

    @classmethod
    def from_config(cls, config: RateLimitConfig | None = None) -> AdmissionController:
        """Create a controller from RateLimitConfig (defaults to LXAPI.config.rate_limit)."""
        if config is None:
            from lxapi._config import LXAPI

            config = LXAPI.config.rate_limit

        return cls(
            capacity_table=config.capacity_table,
            default_capacity=config.default_capacity,
            grant_timeout=config.grant_timeout,
            sweep_interval=config.sweep_interval,
        )

    # ------------------------------------------------------------------
    # Capacity lookup
    # ------------------------------------------------------------------

    def get_capacity(self, endpoint: str) -> int:
        """Return the capacity of `endpoint`: first matching pattern, else the default."""
        for pattern, capacity in self.capacity_table:
            if pattern in endpoint:
                return capacity
        return self.default_capacity

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def acquire(self, identity: str, endpoint: str) -> AdmissionResult:
        """
        Try to take a slot for (identity, endpoint) without blocking.

        Returns:
            AdmissionResult(granted=True, grant_id=...) if a slot was free,
            AdmissionResult(granted=False) otherwise.
        """
        with self._lock:
            bucket = self._get_or_create_bucket(identity, endpoint)
            if bucket.available <= 0:
                logger.debug(
                    f"{identity} | LX | Admission denied for {endpoint} "
                    f"(capacity={bucket.capacity}, outstanding={len(bucket.grants)})"
                )
                return AdmissionResult(granted=False)

            now = time.monotonic()
            grant = Grant(grant_id=uuid.uuid4().hex, issued_at=now, deadline=now + self.grant_timeout)
            bucket.available -= 1
            bucket.grants[grant.grant_id] = grant

            heapq.heappush(self._deadlines, (grant.deadline, grant.grant_id, identity, endpoint))
            if self._deadlines[0][1] == grant.grant_id:
                self._wakeup.notify()

        logger.debug(f"{identity} | LX | Grant {grant.grant_id[:8]} issued for {endpoint}")
        return AdmissionResult(granted=True, grant_id=grant.grant_id)

    def release(self, identity: str, endpoint: str, grant_id: str | None) -> bool:
        """
        Return a slot to its bucket.

        Idempotent: releasing an unknown or already released grant (or a grant
        of a bucket that was never created) does nothing.

        Returns:
            True if a grant was actually released, False otherwise.
        """
        if grant_id is None:
            return False

        with self._lock:
            released = self._release_locked(identity, endpoint, grant_id)

        if released:
            logger.debug(f"{identity} | LX | Grant {grant_id[:8]} released for {endpoint}")
        return released

    def _release_locked(self, identity: str, endpoint: str, grant_id: str) -> bool:
        """Caller must hold self._lock."""
        bucket = self._buckets.get((identity, endpoint))
        if bucket is None:
            return False
        if bucket.grants.pop(grant_id, None) is None:
            return False
        bucket.available = min(bucket.capacity, bucket.available + 1)
        return True

    # ------------------------------------------------------------------
    # Forced release
    # ------------------------------------------------------------------

    def sweep(self, now: float | None = None) -> int:
        """
        Force-release every grant older than grant_timeout.

        Args:
            now: Monotonic timestamp to compare against (defaults to time.monotonic()).

        Returns:
            Number of grants released.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        """Caller must hold self._lock."""
        stale = [
            (identity, endpoint, grant_id)
            for (identity, endpoint), bucket in self._buckets.items()
            for grant_id, grant in bucket.grants.items()
            if now - grant.issued_at > self.grant_timeout
        ]
        released = sum(1 for key in stale if self._release_locked(*key))
        if released:
            logger.warning(f"Admission sweep reclaimed {released} stale grant(s).")
        return released

    def _reap_expired_locked(self, now: float) -> None:
        """Release every grant whose deadline passed. Caller must hold self._lock."""
        while self._deadlines and self._deadlines[0][0] <= now:
            _, grant_id, identity, endpoint = heapq.heappop(self._deadlines)
            if self._release_locked(identity, endpoint, grant_id):
                logger.warning(
                    f"{identity} | LX | Grant {grant_id[:8]} for {endpoint} was not released "
                    f"within {self.grant_timeout:.0f}s. Slot reclaimed."
                )

    def _run(self) -> None:
        next_sweep = None if self.sweep_interval is None else time.monotonic() + self.sweep_interval
        with self._wakeup:
            while not self._closed.is_set():
                now = time.monotonic()
                self._reap_expired_locked(now)
                if next_sweep is not None and now >= next_sweep:
                    assert self.sweep_interval is not None  # for type checker
                    self._sweep_locked(now)
                    next_sweep = now + self.sweep_interval

                wake_at = next_sweep
                if self._deadlines:
                    earliest = self._deadlines[0][0]
                    wake_at = earliest if wake_at is None else min(wake_at, earliest)
                self._wakeup.wait(None if wake_at is None else max(0.0, wake_at - now))

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def snapshot(self, identity: str, endpoint: str) -> BucketSnapshot | None:
        """Return a read-only view of the bucket, or None if it was never used."""
        with self._lock:
            bucket = self._buckets.get((identity, endpoint))
            if bucket is None:
                return None
            return BucketSnapshot(
                capacity=bucket.capacity,
                available=bucket.available,
                outstanding=len(bucket.grants),
            )

    def close(self) -> None:
        """Stop the background thread, drop pending deadlines and forget all buckets."""
        self._closed.set()
        with self._wakeup:
            self._deadlines.clear()
            self._buckets.clear()
            self._wakeup.notify_all()

    def __enter__(self) -> AdmissionController:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    def _get_or_create_bucket(self, identity: str, endpoint: str) -> Bucket:
        """Caller must hold self._lock."""
        key = (identity, endpoint)
        bucket = self._buckets.get(key)
        if bucket is None:
            capacity = self.get_capacity(endpoint)
            bucket = Bucket(capacity=capacity, available=capacity)
            self._buckets[key] = bucket
        return bucket
