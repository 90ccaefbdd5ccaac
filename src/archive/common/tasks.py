"""
Helpers shared by Celery tasks.
"""

import logging
import secrets
import time
import traceback
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from functools import wraps
from typing import Any

from archive.common import settings
from archive.common.kv import CounterStore, make_counter_store

logger = logging.getLogger(__name__)


def safe_task_execution(
    func: Callable[..., Mapping[str, Any]],
) -> Callable[..., Mapping[str, Any]]:
    """
    Decorator for task functions: logs failures with their traceback and re-raises.

    Example:
        @app.task(name=SYNC_USER_DMS)
        @safe_task_execution
        def sync_user_dms(workspace_id, user_id):
            ...
            return {"status": "success"}
    """

    @wraps(func)
    def wrapper(*args, **kwargs) -> Mapping[str, Any]:
        start_time = time.perf_counter()
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Task {func.__name__} failed: {e}")
            logger.error(traceback.format_exc())
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(f"Task {func.__name__} finished in {duration_ms:.0f}ms")

    return wrapper


class SyncAlreadyRunning(Exception):
    pass


_lock_store: CounterStore | None = None


def get_lock_store() -> CounterStore:
    global _lock_store
    if _lock_store is None:
        _lock_store = make_counter_store()
    return _lock_store


def set_lock_store(store: CounterStore | None) -> None:
    global _lock_store
    _lock_store = store


@contextmanager
def sync_lock(
    key: str,
    timeout: int = settings.SYNC_LOCK_TIMEOUT,
    store: CounterStore | None = None,
) -> Iterator[None]:
    """Hold a named lock for the duration of a sync run.

    Acquired with set-if-absent plus a TTL, so a crashed worker can't hold it
    forever. The lock holds a random token and is only released while it still
    holds that token: a run that outlives the TTL leaves a lock taken over by
    another worker alone.

    Raises:
        SyncAlreadyRunning: another run holds the lock
    """
    store = store or get_lock_store()
    lock_key = f"sync_lock:{key}"
    token = secrets.randbits(62)
    if not store.add(lock_key, token, timeout):
        raise SyncAlreadyRunning(key)
    try:
        yield
    finally:
        if not store.delete_if_equal(lock_key, token):
            logger.warning(f"Sync lock {lock_key} expired before the run finished")
