"""Per-thread mutual exclusion for summarization."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ThreadLocks:
    """One lock per thread key. Different keys never block each other."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, thread_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(thread_id)
            if lock is None:
                lock = self._locks[thread_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, thread_id: str, timeout: float = -1) -> Iterator[bool]:
        """Acquire the thread's lock, yielding whether it was acquired.

        ``timeout=-1`` waits forever; ``0`` only tries once.
        """
        lock = self._lock_for(thread_id)
        if timeout == 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def is_locked(self, thread_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(thread_id)
        return lock is not None and lock.locked()
