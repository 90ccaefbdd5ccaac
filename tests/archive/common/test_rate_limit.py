from unittest.mock import MagicMock

import pytest

from archive.common.kv import InMemoryCounterStore, RedisCounterStore, make_counter_store
from archive.common.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryCounterStore(clock=clock), limit=5, window=60)


def test_sixth_request_is_limited(limiter):
    assert [limiter.hit("user:U1") for _ in range(6)] == [True] * 5 + [False]


def test_limit_is_per_key(limiter):
    for _ in range(5):
        limiter.hit("user:U1")

    assert not limiter.hit("user:U1")
    assert limiter.hit("user:U2")


def test_window_expires(limiter, clock):
    for _ in range(5):
        limiter.hit("user:U1")
    assert not limiter.hit("user:U1")

    clock.advance(61)
    assert limiter.hit("user:U1")
    assert limiter.remaining("user:U1") == 4


def test_each_allowed_hit_refreshes_the_window(limiter, clock):
    limiter.hit("user:U1")
    clock.advance(50)
    limiter.hit("user:U1")
    clock.advance(50)

    # 100s after the first hit, but only 50s after the last one
    assert limiter.remaining("user:U1") == 3


def test_reset(limiter):
    for _ in range(5):
        limiter.hit("user:U1")
    limiter.reset("user:U1")
    assert limiter.hit("user:U1")


def test_in_memory_add_only_when_absent(clock):
    store = InMemoryCounterStore(clock=clock)

    assert store.add("lock", 1, 10)
    assert not store.add("lock", 1, 10)

    clock.advance(11)
    assert store.add("lock", 1, 10)

    store.delete("lock")
    assert store.get("lock") is None


def test_in_memory_delete_if_equal(clock):
    store = InMemoryCounterStore(clock=clock)
    store.add("lock", 7, 10)

    assert not store.delete_if_equal("lock", 8)
    assert store.get("lock") == 7
    assert store.delete_if_equal("lock", 7)
    assert store.get("lock") is None
    assert not store.delete_if_equal("lock", 7)


def test_redis_store_uses_prefixed_keys():
    redis_client = MagicMock()
    redis_client.get.return_value = b"3"
    redis_client.set.return_value = True
    store = RedisCounterStore(redis_client=redis_client, key_prefix="archive:")

    assert store.get("rate_limit:user:U1") == 3
    redis_client.get.assert_called_once_with("archive:rate_limit:user:U1")

    store.put("rate_limit:user:U1", 4, 60)
    redis_client.set.assert_called_with("archive:rate_limit:user:U1", 4, ex=60)

    assert store.add("sync_lock:user:U1", 1, 1800)
    redis_client.set.assert_called_with(
        "archive:sync_lock:user:U1", 1, ex=1800, nx=True
    )

    store.delete("sync_lock:user:U1")
    redis_client.delete.assert_called_once_with("archive:sync_lock:user:U1")


def test_redis_store_compare_and_delete():
    redis_client = MagicMock()
    redis_client.eval.return_value = 1
    store = RedisCounterStore(redis_client=redis_client, key_prefix="archive")

    assert store.delete_if_equal("sync_lock:user:U1", 42)
    script, numkeys, key, value = redis_client.eval.call_args.args
    assert numkeys == 1
    assert key == "archive:sync_lock:user:U1"
    assert value == "42"
    assert "del" in script

    redis_client.eval.return_value = 0
    assert not store.delete_if_equal("sync_lock:user:U1", 42)


def test_redis_store_missing_key():
    redis_client = MagicMock()
    redis_client.get.return_value = None
    redis_client.set.return_value = None
    store = RedisCounterStore(redis_client=redis_client)

    assert store.get("anything") is None
    assert store.add("lock", 1, 10) is False


def test_make_counter_store():
    assert isinstance(make_counter_store("memory"), InMemoryCounterStore)
    with pytest.raises(ValueError):
        make_counter_store("memcached")
