"""Upload throttling over a pluggable fixed-window counter store."""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Protocol

from docvault.services.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowCount:
    count: int
    window_reset_at: float  # epoch seconds


class CounterStore(Protocol):
    def hit(self, key: str, window_seconds: int) -> WindowCount:
        """Increment the counter for ``key`` in its current window and return it."""


class InMemoryCounterStore:
    """Counters for a single process. Use :class:`RedisCounterStore` when running
    more than one instance."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._windows: dict[str, WindowCount] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_seconds: int) -> WindowCount:
        now = self._clock()
        with self._lock:
            self._windows = {
                k: w for k, w in self._windows.items() if w.window_reset_at >= now
            }
            current = self._windows.get(key)
            if current is None:
                current = WindowCount(1, now + window_seconds)
            else:
                current = WindowCount(current.count + 1, current.window_reset_at)
            self._windows[key] = current
            return current

    def __len__(self) -> int:
        return len(self._windows)


class RedisCounterStore:
    """Counters shared between processes through Redis ``INCR`` + ``PEXPIRE``."""

    def __init__(self, client, prefix: str = "docvault:ratelimit:", clock=time.time):
        self._client = client
        self._prefix = prefix
        self._clock = clock

    def hit(self, key: str, window_seconds: int) -> WindowCount:
        redis_key = f"{self._prefix}{key}"
        pipe = self._client.pipeline()
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        count, ttl_ms = pipe.execute()
        if ttl_ms is None or ttl_ms < 0:
            ttl_ms = window_seconds * 1000
            self._client.pexpire(redis_key, ttl_ms)
        return WindowCount(int(count), self._clock() + ttl_ms / 1000)


class RateLimiter:
    def __init__(self, store: CounterStore, max_hits: int, window_seconds: int, clock=time.time):
        self._store = store
        self._max_hits = max_hits
        self._window_seconds = window_seconds
        self._clock = clock

    def check(self, key: str) -> WindowCount:
        """Count one attempt for ``key``; raise once the window's budget is spent."""
        window = self._store.hit(key, self._window_seconds)
        if window.count > self._max_hits:
            retry_after = max(1, math.ceil(window.window_reset_at - self._clock()))
            logger.info("Rate limit exceeded for %s (retry in %ss)", key, retry_after)
            raise RateLimitExceededError(retry_after=retry_after)
        return window


def build_counter_store(backend: str, redis_url: str) -> CounterStore:
    if backend == "redis":
        import redis

        return RedisCounterStore(redis.from_url(redis_url))
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend '{backend}'. Expected 'memory' or 'redis'")
    return InMemoryCounterStore()
