"""Per-user request rate limiting for the archive API."""

import logging

from archive.common import settings
from archive.common.kv import CounterStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows `limit` hits per key within a window.

    Each allowed hit stores the incremented count with a fresh TTL, so the
    window extends while requests keep coming.
    """

    def __init__(
        self,
        store: CounterStore,
        limit: int = settings.RATE_LIMIT_REQUESTS,
        window: int = settings.RATE_LIMIT_WINDOW,
        prefix: str = "rate_limit",
    ) -> None:
        self.store = store
        self.limit = limit
        self.window = window
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def hit(self, key: str) -> bool:
        """Count a request. Returns False when the key is over its limit."""
        count = self.store.get(self._key(key)) or 0
        if count >= self.limit:
            logger.warning(f"Rate limit exceeded for {key} ({count}/{self.limit})")
            return False
        self.store.put(self._key(key), count + 1, self.window)
        return True

    def remaining(self, key: str) -> int:
        count = self.store.get(self._key(key)) or 0
        return max(self.limit - count, 0)

    def reset(self, key: str) -> None:
        self.store.delete(self._key(key))
