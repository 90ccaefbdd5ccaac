"""TTL counter stores backing the rate limiter and the sync overlap lock."""

import time
from collections.abc import Callable
from threading import Lock
from typing import Any, Protocol

import redis

from archive.common import settings


class RedisClientProtocol(Protocol):
    def get(self, key: str) -> Any:  # pragma: no cover - Protocol definition
        ...

    def set(
        self, key: str, value: Any, ex: int | None = None, nx: bool = False
    ) -> Any:  # pragma: no cover - Protocol definition
        ...

    def delete(self, *keys: str) -> Any:  # pragma: no cover - Protocol definition
        ...

    def eval(
        self, script: str, numkeys: int, *keys_and_args: Any
    ) -> Any:  # pragma: no cover - Protocol definition
        ...


class CounterStore(Protocol):
    def get(self, key: str) -> int | None: ...

    def put(self, key: str, value: int, ttl: int) -> None: ...

    def add(self, key: str, value: int, ttl: int) -> bool:
        """Store the value only if the key is absent. Returns whether it was stored."""
        ...

    def delete(self, key: str) -> None: ...

    def delete_if_equal(self, key: str, value: int) -> bool:
        """Delete the key only while it still holds `value`. Returns whether it was deleted."""
        ...


def get_redis_client() -> redis.Redis:
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=int(settings.REDIS_PORT),
        db=int(settings.REDIS_DB),
        decode_responses=False,
    )


_COMPARE_AND_DELETE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisCounterStore:
    def __init__(
        self,
        redis_client: RedisClientProtocol | None = None,
        key_prefix: str | None = None,
    ) -> None:
        self._redis = redis_client or get_redis_client()
        prefix = key_prefix or settings.REDIS_KEY_PREFIX
        self._key_prefix = prefix.rstrip(":")

    def _format_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def get(self, key: str) -> int | None:
        value = self._redis.get(self._format_key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return int(value)

    def put(self, key: str, value: int, ttl: int) -> None:
        self._redis.set(self._format_key(key), value, ex=ttl)

    def add(self, key: str, value: int, ttl: int) -> bool:
        return bool(self._redis.set(self._format_key(key), value, ex=ttl, nx=True))

    def delete(self, key: str) -> None:
        self._redis.delete(self._format_key(key))

    def delete_if_equal(self, key: str, value: int) -> bool:
        return bool(
            self._redis.eval(_COMPARE_AND_DELETE, 1, self._format_key(key), str(value))
        )


class InMemoryCounterStore:
    """Process-local store for tests and single-process deployments."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[int, float]] = {}
        self._lock = Lock()

    def _live(self, key: str) -> int | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    def get(self, key: str) -> int | None:
        with self._lock:
            return self._live(key)

    def put(self, key: str, value: int, ttl: int) -> None:
        with self._lock:
            self._values[key] = (value, self._clock() + ttl)

    def add(self, key: str, value: int, ttl: int) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._values[key] = (value, self._clock() + ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def delete_if_equal(self, key: str, value: int) -> bool:
        with self._lock:
            if self._live(key) != value:
                return False
            del self._values[key]
            return True


def make_counter_store(backend: str | None = None) -> CounterStore:
    backend = (backend or settings.RATE_LIMIT_BACKEND).lower()
    if backend == "memory":
        return InMemoryCounterStore()
    if backend == "redis":
        return RedisCounterStore()
    raise ValueError(f"Unknown counter store backend: {backend}")
