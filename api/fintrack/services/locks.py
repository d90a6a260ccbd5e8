"""
Per-definition mutual exclusion.

The scheduler wraps every materialization and undo in ``provider.hold(key)``
so that a manual "process all" and a timer tick can never both advance the
same definition.  ``LocalLockProvider`` is enough for a single process;
``RedisLockProvider`` is used when API workers and Celery workers share a
database.
"""
import logging
import threading
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol

import redis
from redis.exceptions import LockError, RedisError

from fintrack.services.errors import LockUnavailable

logger = logging.getLogger(__name__)


class LockProvider(Protocol):
    def hold(self, key: str) -> ContextManager[None]: ...


class LocalLockProvider:
    """In-process locks keyed by string, one ``threading.Lock`` per key."""

    def __init__(self, wait_seconds: float = 5.0):
        self._wait_seconds = wait_seconds
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        if not lock.acquire(timeout=self._wait_seconds):
            raise LockUnavailable(f"Lock busy: {key}")
        try:
            yield
        finally:
            lock.release()


class RedisLockProvider:
    """Distributed locks backed by ``redis.lock.Lock`` (SET NX + expiry)."""

    def __init__(self, client: redis.Redis, timeout_seconds: float = 30, wait_seconds: float = 5):
        self._client = client
        self._timeout = timeout_seconds
        self._wait = wait_seconds

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._client.lock(key, timeout=self._timeout, blocking_timeout=self._wait)
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            raise LockUnavailable(f"Lock backend unavailable for {key}: {exc}") from exc
        if not acquired:
            raise LockUnavailable(f"Lock busy: {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired before release; the work itself already finished
                logger.warning("Lock %s expired before release (timeout=%ss)", key, self._timeout)
