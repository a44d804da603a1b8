"""Context utilization accounting and the per-thread state cache."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Callable

from homebase_context.context.models import ContextState, Message

if TYPE_CHECKING:
    from homebase_context.storage import MessageStore, SnapshotCounts, SnapshotStore

LOGGER = logging.getLogger(__name__)


def utilization(total_tokens: int, budget: int) -> float:
    """Percent of budget used. Not clamped: over 100 signals overflow."""
    if budget <= 0:
        return 0.0
    return max(0.0, 100.0 * total_tokens / budget)


def state_from_messages(
    thread_id: str,
    active: list[Message],
    budget: int,
    counts: SnapshotCounts | None = None,
) -> ContextState:
    """Build a ContextState from an already-fetched active message list."""
    total = sum(m.estimated_tokens for m in active)
    return ContextState(
        thread_id=thread_id,
        total_tokens=total,
        active_message_count=len(active),
        context_utilization=utilization(total, budget),
        snapshot_count=counts.snapshot_count if counts else 0,
        last_snapshot_at=counts.last_snapshot_at if counts else None,
    )


class ContextStateCalculator:
    """Computes ContextState from the stores. Side-effect free."""

    def __init__(
        self,
        messages: MessageStore,
        snapshots: SnapshotStore,
        budget: int,
    ) -> None:
        self.messages = messages
        self.snapshots = snapshots
        self.budget = budget

    def compute_state(self, thread_id: str) -> ContextState:
        """Recompute state for a thread from current message/snapshot data."""
        active = self.messages.list_active(thread_id)
        counts = self.snapshots.counts_for_thread(thread_id)
        return state_from_messages(thread_id, active, self.budget, counts)


class StateCache:
    """Time-bounded ContextState cache keyed by thread id.

    Entries expire after ``ttl`` seconds and are dropped on every write to
    their thread. Expired entries are still kept as last-known-good values
    until invalidated, for use while the store is unavailable.

    Each invalidation bumps the thread's generation. A reader takes the
    generation before computing state and hands it back to ``put``; the
    put is dropped if a write landed in between.
    """

    def __init__(
        self,
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, ContextState]] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, thread_id: str) -> ContextState | None:
        """Fresh cached state, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(thread_id)
        if entry is None:
            return None
        stored_at, state = entry
        if self._clock() - stored_at > self.ttl:
            return None
        return replace(state)

    def last_known_good(self, thread_id: str) -> ContextState | None:
        """Most recent cached state regardless of age, marked stale."""
        with self._lock:
            entry = self._entries.get(thread_id)
        if entry is None:
            return None
        return replace(entry[1], stale=True)

    def generation(self, thread_id: str) -> int:
        with self._lock:
            return self._generations.get(thread_id, 0)

    def put(self, state: ContextState, generation: int | None = None) -> bool:
        """Store state. Returns False when ``generation`` is out of date."""
        with self._lock:
            current = self._generations.get(state.thread_id, 0)
            if generation is not None and generation != current:
                LOGGER.debug("Dropping outdated state for thread %s", state.thread_id)
                return False
            self._entries[state.thread_id] = (self._clock(), replace(state, stale=False))
            return True

    def invalidate(self, thread_id: str) -> None:
        with self._lock:
            self._entries.pop(thread_id, None)
            self._generations[thread_id] = self._generations.get(thread_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            for thread_id in self._entries:
                self._generations[thread_id] = self._generations.get(thread_id, 0) + 1
            self._entries.clear()
