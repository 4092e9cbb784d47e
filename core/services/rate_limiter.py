"""
Per-(user, provider) token bucket admission control.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from core.config import RateLimitConfig, RateLimitRule
from core.errors import RateLimited


class _Bucket:
    __slots__ = ("tokens", "updated_at")

    def __init__(self, tokens: float, updated_at: float):
        self.tokens = tokens
        self.updated_at = updated_at


class TokenBucketRateLimiter:
    """Token buckets keyed by (user_id, provider).

    Buckets are refilled lazily on access and kept in an LRU map. Past
    max_buckets only buckets that have refilled to capacity are evicted.
    Buckets still below capacity are kept even if the map grows past the bound.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: OrderedDict[tuple[str, str], _Bucket] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def rule_for(self, provider: str) -> RateLimitRule:
        return self._config.overrides.get(provider, self._config.default)

    def _refilled(self, key: tuple[str, str], now: float) -> tuple[Optional[_Bucket], float]:
        rule = self.rule_for(key[1])
        bucket = self._buckets.get(key)
        if bucket is None:
            return None, rule.capacity
        elapsed = max(0.0, now - bucket.updated_at)
        return bucket, min(rule.capacity, bucket.tokens + elapsed * rule.refill_per_second)

    def _evict_idle(self, now: float, keep: tuple[str, str]) -> None:
        excess = len(self._buckets) - self._config.max_buckets
        if excess <= 0:
            return
        idle = []
        for key in self._buckets:
            if len(idle) >= excess:
                break
            if key == keep:
                continue
            _, tokens = self._refilled(key, now)
            if tokens >= self.rule_for(key[1]).capacity:
                idle.append(key)
        for key in idle:
            del self._buckets[key]

    def try_acquire(self, user_id: str, provider: str) -> bool:
        if not self._config.enabled:
            return True
        key = (user_id, provider)
        with self._lock:
            now = self._clock()
            bucket, tokens = self._refilled(key, now)
            if bucket is None:
                bucket = _Bucket(tokens, now)
                self._buckets[key] = bucket
                self._evict_idle(now, keep=key)
            else:
                self._buckets.move_to_end(key)
            bucket.updated_at = now
            if tokens < 1.0:
                bucket.tokens = tokens
                return False
            bucket.tokens = tokens - 1.0
            return True

    def acquire(self, user_id: str, provider: str) -> None:
        if not self.try_acquire(user_id, provider):
            raise RateLimited(user_id, provider)

    def would_admit(self, user_id: str, provider: str) -> bool:
        """Peek without consuming a token or touching LRU order."""
        if not self._config.enabled:
            return True
        with self._lock:
            _, tokens = self._refilled((user_id, provider), self._clock())
            return tokens >= 1.0

    def status(self, user_id: str) -> dict:
        with self._lock:
            now = self._clock()
            result = {}
            for (owner, provider) in list(self._buckets.keys()):
                if owner != user_id:
                    continue
                _, tokens = self._refilled((owner, provider), now)
                rule = self.rule_for(provider)
                result[provider] = {
                    "tokens": round(tokens, 3),
                    "capacity": rule.capacity,
                    "refill_per_second": rule.refill_per_second,
                }
            return result

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)
