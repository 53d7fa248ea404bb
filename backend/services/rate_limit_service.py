"""In-memory token-bucket rate limiter for auth endpoints. State is lost on restart."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class BucketLimit:
    """Bucket shape: ``capacity`` burst, refilled at ``refill_per_second``."""

    capacity: float
    refill_per_second: float


@dataclass
class _Bucket:
    tokens: float
    last_refill: float


class TokenBucketRateLimiter:
    """Token buckets keyed by client address and limit class.

    Thread-safety: every check-and-consume runs under one lock, so the limiter is
    safe to share between the event loop and worker threads.
    """

    def __init__(self, limits: dict[str, BucketLimit]) -> None:
        self._limits = dict(limits)
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def clear(self) -> None:
        """Forget all buckets."""
        with self._lock:
            self._buckets.clear()

    def try_acquire(self, client_key: str, limit_class: str) -> tuple[bool, int]:
        """Consume one token. Returns (allowed, retry_after_seconds).

        Unknown limit classes are never limited.
        """
        limit = self._limits.get(limit_class)
        if limit is None:
            return True, 0

        bucket_key = f"{client_key}:{limit_class}"
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.get(bucket_key)
            if bucket is None:
                bucket = _Bucket(tokens=limit.capacity, last_refill=now)
                self._buckets[bucket_key] = bucket

            elapsed = max(now - bucket.last_refill, 0.0)
            bucket.tokens = min(limit.capacity, bucket.tokens + elapsed * limit.refill_per_second)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True, 0

            if limit.refill_per_second <= 0:
                return False, 1
            missing = 1.0 - bucket.tokens
            return False, max(math.ceil(missing / limit.refill_per_second), 1)
