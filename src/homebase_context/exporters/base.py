"""Base exporter interface for thread history export."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from homebase_context.clock import to_iso, utcnow

if TYPE_CHECKING:
    from homebase_context.context.models import Message, Snapshot


@dataclass
class ThreadHistory:
    """Everything recorded for one thread: snapshots plus the active tail."""

    thread_id: str
    snapshots: list[Snapshot] = field(default_factory=list)
    active_messages: list[Message] = field(default_factory=list)


class Exporter(ABC):
    """Base class for thread history exporters."""

    @property
    @abstractmethod
    def extension(self) -> str:
        """File extension without dot (e.g., 'json', 'yaml')."""
        ...

    @abstractmethod
    def export(self, history: ThreadHistory, output_path: Path) -> int:
        """Export a thread's history to file.

        Args:
            history: Snapshots and active messages of the thread.
            output_path: Path to output file.

        Returns:
            Number of records (snapshots + messages) exported.
        """
        ...

    @staticmethod
    def history_to_dict(history: ThreadHistory) -> dict:
        """Convert a thread history to an exportable dictionary."""
        snapshots = [Exporter.snapshot_to_dict(s) for s in history.snapshots]
        messages = [Exporter.message_to_dict(m) for m in history.active_messages]
        return {
            "thread_id": history.thread_id,
            "exported_at": to_iso(utcnow()),
            "snapshots": snapshots,
            "active_messages": messages,
            "count": len(snapshots) + len(messages),
        }

    @staticmethod
    def snapshot_to_dict(snapshot: Snapshot) -> dict:
        """Snapshot fields minus storage internals."""
        data = snapshot.to_dict()
        data.pop("last_message_seq", None)
        return data

    @staticmethod
    def message_to_dict(message: Message) -> dict:
        """Message fields minus storage internals."""
        data = message.to_dict()
        data.pop("seq", None)
        return data
