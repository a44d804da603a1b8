"""Builds the message list sent downstream to the inference gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING

from homebase_context.context.models import Message, Snapshot
from homebase_context.context.prompts import (
    MEMORY_ENTITIES,
    MEMORY_ENTRY,
    MEMORY_KEY_POINTS,
)

if TYPE_CHECKING:
    from homebase_context.storage import MessageStore, SnapshotStore

MAX_ENTITIES_SHOWN = 5


def render_snapshot(snapshot: Snapshot) -> str:
    """Render one snapshot as the content of a system entry."""
    parts = [
        MEMORY_ENTRY.format(
            first=snapshot.first_message_at.strftime("%Y-%m-%d"),
            last=snapshot.last_message_at.strftime("%Y-%m-%d"),
            message_count=snapshot.message_count,
            summary=snapshot.summary,
        )
    ]
    if snapshot.key_points:
        parts.append(
            MEMORY_KEY_POINTS.format(
                points="\n".join(f"- {p}" for p in snapshot.key_points)
            )
        )
    if snapshot.entities:
        shown = ", ".join(
            f"{e.value} ({e.type})" for e in snapshot.entities[:MAX_ENTITIES_SHOWN]
        )
        parts.append(MEMORY_ENTITIES.format(entities=shown))
    return "\n".join(parts)


def assemble(snapshots: list[Snapshot], active: list[Message]) -> list[dict]:
    """One system entry per snapshot, then every active message, in order."""
    ordered = sorted(snapshots, key=lambda s: (s.created_at, s.last_message_seq))
    prompt = [{"role": "system", "content": render_snapshot(s)} for s in ordered]
    prompt.extend({"role": m.role, "content": m.content} for m in active)
    return prompt


class ContextAssembler:
    """Reads snapshots and active messages for a thread and orders them."""

    def __init__(self, messages: MessageStore, snapshots: SnapshotStore) -> None:
        self.messages = messages
        self.snapshots = snapshots

    def assemble_prompt(self, thread_id: str) -> list[dict]:
        """Snapshot summaries followed by the active tail, chronologically.

        Raw content of archived messages is never included.
        """
        # Snapshots first: a compaction landing between the two reads can
        # only drop messages from this prompt, never duplicate them.
        snapshots = self.snapshots.list(thread_id)
        active = self.messages.list_active(thread_id)
        return assemble(snapshots, active)

    def build_context_messages(self, thread_id: str, user_message: str) -> list[dict]:
        """The assembled prompt with a new, not yet recorded, user turn appended."""
        prompt = self.assemble_prompt(thread_id)
        prompt.append({"role": "user", "content": user_message})
        return prompt
