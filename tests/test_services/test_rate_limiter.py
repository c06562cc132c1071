"""TDD tests for upload rate limiting."""

from unittest.mock import MagicMock

import pytest

from docvault.services.errors import RateLimitExceededError
from docvault.services.rate_limiter import (
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    build_counter_store,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryCounterStore(clock), max_hits=10, window_seconds=900, clock=clock)


class TestInMemoryLimiter:
    def test_allows_up_to_max(self, limiter):
        for i in range(10):
            assert limiter.check("upload:1.2.3.4").count == i + 1

    def test_eleventh_attempt_rejected(self, limiter):
        for _ in range(10):
            limiter.check("upload:1.2.3.4")
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("upload:1.2.3.4")
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 900

    def test_keys_are_independent(self, limiter):
        for _ in range(10):
            limiter.check("upload:1.2.3.4")
        assert limiter.check("upload:5.6.7.8").count == 1

    def test_window_resets(self, limiter, clock):
        for _ in range(10):
            limiter.check("upload:1.2.3.4")
        clock.now += 901
        assert limiter.check("upload:1.2.3.4").count == 1

    def test_expired_windows_are_dropped(self, clock):
        store = InMemoryCounterStore(clock)
        for i in range(50):
            store.hit(f"upload:10.0.0.{i}", 900)
        assert len(store) == 50
        clock.now += 901
        store.hit("upload:10.0.1.1", 900)
        assert len(store) == 1

    def test_retry_after_shrinks(self, limiter, clock):
        for _ in range(10):
            limiter.check("k")
        clock.now += 600
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("k")
        assert exc_info.value.retry_after == 300


class TestRedisCounterStore:
    def _client(self, count, ttl_ms):
        client = MagicMock()
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [count, ttl_ms]
        return client, pipe

    def test_first_hit_sets_expiry(self, clock):
        client, pipe = self._client(1, -1)
        store = RedisCounterStore(client, clock=clock)
        window = store.hit("upload:ip", 900)
        pipe.incr.assert_called_once_with("docvault:ratelimit:upload:ip")
        client.pexpire.assert_called_once_with("docvault:ratelimit:upload:ip", 900_000)
        assert window.count == 1
        assert window.window_reset_at == clock.now + 900

    def test_existing_window_keeps_ttl(self, clock):
        client, _ = self._client(4, 30_000)
        window = RedisCounterStore(client, clock=clock).hit("k", 900)
        client.pexpire.assert_not_called()
        assert window.count == 4
        assert window.window_reset_at == clock.now + 30

    def test_limiter_over_redis(self, clock):
        client, _ = self._client(11, 5_000)
        limiter = RateLimiter(RedisCounterStore(client, clock=clock), 10, 900, clock=clock)
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("k")
        assert exc_info.value.retry_after == 5


class TestBuildCounterStore:
    def test_memory(self):
        assert isinstance(build_counter_store("memory", "redis://unused"), InMemoryCounterStore)

    def test_redis(self):
        store = build_counter_store("redis", "redis://localhost:6379/0")
        assert isinstance(store, RedisCounterStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown rate limit backend"):
            build_counter_store("memcached", "")
