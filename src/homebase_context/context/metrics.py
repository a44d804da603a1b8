"""Compaction metrics for observability."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class CompactionStats:
    """Aggregate compaction statistics across the process lifetime."""

    total_compactions: int = 0
    total_tokens_saved: int = 0
    total_messages_archived: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
    failures: int = 0

    # Compression ratio per snapshot, 0.0-1.0
    ratio_samples: list[float] = field(default_factory=list)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_compaction(
        self, tokens_before: int, tokens_after: int, messages: int
    ) -> None:
        """Record a snapshot that replaced ``messages`` messages."""
        with self._lock:
            self.total_compactions += 1
            self.total_tokens_saved += tokens_before - tokens_after
            self.total_messages_archived += messages
            if tokens_before > 0:
                self.ratio_samples.append(1 - tokens_after / tokens_before)

    def record_skip(self, reason: str) -> None:
        """Record a no-op summarization by reason."""
        with self._lock:
            self.skipped[reason] = self.skipped.get(reason, 0) + 1

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1

    @property
    def avg_compression(self) -> float:
        """Average fraction of tokens removed per snapshot."""
        if not self.ratio_samples:
            return 0.0
        return sum(self.ratio_samples) / len(self.ratio_samples)

    def summary(self) -> str:
        """Human-readable summary of compaction stats."""
        skipped = sum(self.skipped.values())
        return (
            f"Compactions: {self.total_compactions} | "
            f"Messages archived: {self.total_messages_archived} | "
            f"Tokens saved: {self.total_tokens_saved} | "
            f"Avg compression: {self.avg_compression * 100:.1f}% | "
            f"Skipped: {skipped} | Failed: {self.failures}"
        )
