"""In-memory token bucket rate limiter keyed by provider name."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

DEFAULT_CAPACITY = 100
DEFAULT_REFILL_RATE = 10.0


@dataclass
class TokenBucket:
    tokens: float
    last_refill: float
    capacity: float
    refill_rate: float  # tokens per second


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after: Optional[int] = None  # milliseconds


class RateLimiter:
    """Lazily refilled token buckets; never blocks and never raises."""

    def __init__(
        self,
        capacity: float = DEFAULT_CAPACITY,
        refill_rate: float = DEFAULT_REFILL_RATE,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = capacity
        self._refill_rate = refill_rate
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    def check_limit(self, key: str) -> RateLimitResult:
        with self._lock:
            bucket = self._refilled_bucket(key)
            tokens = bucket.tokens
            allowed = tokens >= 1
            seconds_to_full = bucket.capacity / bucket.refill_rate
            retry_after = None
            if not allowed:
                retry_after = math.ceil((1 - tokens) / bucket.refill_rate * 1000)
        return RateLimitResult(
            allowed=allowed,
            remaining=math.floor(tokens),
            reset_at=datetime.now(timezone.utc) + timedelta(seconds=seconds_to_full),
            retry_after=retry_after,
        )

    def consume_token(self, key: str, tokens: float = 1) -> bool:
        with self._lock:
            bucket = self._refilled_bucket(key)
            if bucket.tokens >= tokens:
                bucket.tokens -= tokens
                return True
            return False

    def get_remaining_tokens(self, key: str) -> int:
        with self._lock:
            return math.floor(self._refilled_bucket(key).tokens)

    def reset(self, key: str) -> None:
        with self._lock:
            bucket = self._bucket(key)
            bucket.tokens = bucket.capacity
            bucket.last_refill = self._clock()

    def _bucket(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                tokens=self._capacity,
                last_refill=self._clock(),
                capacity=self._capacity,
                refill_rate=self._refill_rate,
            )
            self._buckets[key] = bucket
        return bucket

    def _refilled_bucket(self, key: str) -> TokenBucket:
        bucket = self._bucket(key)
        now = self._clock()
        elapsed = max(now - bucket.last_refill, 0.0)
        bucket.tokens = min(bucket.capacity, bucket.tokens + elapsed * bucket.refill_rate)
        bucket.last_refill = now
        return bucket
