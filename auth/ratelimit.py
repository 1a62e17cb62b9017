"""
auth/ratelimit.py -- Per-address sliding-window counter for the login path.

The shared slowapi limiter in api/limiter.py covers the other public routes.
Login gets its own counter because its contract is specific: a bucket per
source address holding (count, window_start); the first request in a fresh
window initializes the bucket; once the count passes the threshold every
further request in the window fails with the seconds left until reset; the
window resets lazily on the first request after it has elapsed -- there is
no background sweep.

Expired buckets of addresses that never come back are dropped in passing:
the first request arriving a full window after the previous sweep removes
every expired bucket, so the table holds at most about two windows' worth
of distinct addresses.

State lives in process memory. It is created in the app lifespan and resets
on restart, which is acceptable for abuse mitigation (it is not an audit
trail). Multi-worker deployments get one table per worker.

Concurrency: one lock guards the read-modify-write of a bucket, so bursts
from the same address can never undercount.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from core.errors import TooManyRequests

logger = logging.getLogger("shopgate.auth.ratelimit")


@dataclass
class _Bucket:
    count: int
    window_start: float


class LoginRateLimiter:
    """Sliding-window request counter keyed by caller address.

    Usage:
        limiter = LoginRateLimiter(limit=5, window_seconds=900)
        limiter.hit("203.0.113.7")   # raises TooManyRequests on the 6th hit
    """

    def __init__(self, limit: int = 5, window_seconds: float = 15 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, address: str) -> int:
        """Count one request from address and return the count in the current window.

        Raises TooManyRequests (with retry_after in whole seconds) once the
        count exceeds the limit.
        """
        with self._lock:
            now = self._clock()
            if now - self._last_sweep > self.window_seconds:
                self._sweep(now)
            bucket = self._buckets.get(address)
            if bucket is None or now - bucket.window_start > self.window_seconds:
                self._buckets[address] = _Bucket(count=1, window_start=now)
                return 1

            bucket.count += 1
            count = bucket.count
            if count > self.limit:
                retry_after = max(1, math.ceil(bucket.window_start + self.window_seconds - now))
                logger.warning("Login rate limit exceeded for %s (%d requests)", address, count)
                raise TooManyRequests(retry_after=retry_after)
            return count

    def _sweep(self, now: float) -> None:
        # Caller holds self._lock.
        expired = [a for a, b in self._buckets.items() if now - b.window_start > self.window_seconds]
        for address in expired:
            del self._buckets[address]
        self._last_sweep = now
        if expired:
            logger.debug("Dropped %d expired login rate-limit buckets", len(expired))

    def tracked_addresses(self) -> int:
        with self._lock:
            return len(self._buckets)

    def count(self, address: str) -> int:
        with self._lock:
            bucket = self._buckets.get(address)
            return bucket.count if bucket is not None else 0

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
