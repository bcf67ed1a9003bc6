"""Single-flight guard for periodic tasks (poll ticks, manual triggers)."""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable, TypeVar

from helpdesk.core.config import settings
from helpdesk.core.redis_client import get_sync_redis_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class TaskGuard:
    """
    Skip a run when the same task is already in flight.

    Uses a Redis lease (SET NX PX) when REDIS_URL is configured so that the
    guard spans processes; otherwise a process-local lock per task name.
    """

    def __init__(self, *, redis_client=None, lease_seconds: int | None = None):
        self._redis = redis_client
        self._lease_ms = int((lease_seconds or settings.POLL_LEASE_SECONDS) * 1000)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _local_lock(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def run_if_idle(self, name: str, fn: Callable[[], T]) -> tuple[bool, T | None]:
        """Run `fn` unless `name` is already running. Returns (ran, result)."""
        if self._redis is not None:
            return self._run_with_lease(name, fn)

        lock = self._local_lock(name)
        if not lock.acquire(blocking=False):
            logger.info("Task %s already running, skipping", name)
            return False, None
        try:
            return True, fn()
        finally:
            lock.release()

    def _run_with_lease(self, name: str, fn: Callable[[], T]) -> tuple[bool, T | None]:
        key = f"helpdesk:task:{name}"
        token = uuid.uuid4().hex
        if not self._redis.set(key, token, nx=True, px=self._lease_ms):
            logger.info("Task %s leased elsewhere, skipping", name)
            return False, None
        try:
            return True, fn()
        finally:
            self._redis.eval(_RELEASE_SCRIPT, 1, key, token)


_guard: TaskGuard | None = None


def get_task_guard() -> TaskGuard:
    global _guard
    if _guard is None:
        _guard = TaskGuard(redis_client=get_sync_redis_client())
    return _guard
