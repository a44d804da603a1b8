"""Data models for the context layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from homebase_context.clock import from_iso, to_iso

Role = Literal["user", "assistant", "system"]

ROLES: tuple[str, ...] = ("user", "assistant", "system")


def _iso_or_none(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


@dataclass
class Message:
    """A single chat turn. Immutable once stored."""

    id: str
    thread_id: str
    role: Role
    content: str
    created_at: datetime
    estimated_tokens: int
    seq: int | None = None  # Insertion ordinal, assigned by MessageStore

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "role": self.role,
            "content": self.content,
            "created_at": to_iso(self.created_at),
            "estimated_tokens": self.estimated_tokens,
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            role=data["role"],
            content=data["content"],
            created_at=from_iso(data["created_at"]),
            estimated_tokens=data["estimated_tokens"],
            seq=data.get("seq"),
        )


@dataclass
class ExtractedEntity:
    """A named thing mentioned in a summarized window."""

    type: str
    value: str
    mentions: int = 1

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value, "mentions": self.mentions}

    @classmethod
    def from_dict(cls, data: dict) -> ExtractedEntity:
        return cls(
            type=str(data.get("type") or "project"),
            value=str(data["value"]),
            mentions=int(data.get("mentions") or 1),
        )


def merge_entities(entities: list[ExtractedEntity]) -> list[ExtractedEntity]:
    """Collapse duplicates by (type, case-folded value), summing mentions.

    First-seen order and spelling are kept.
    """
    merged: dict[tuple[str, str], ExtractedEntity] = {}
    for entity in entities:
        value = entity.value.strip()
        if not value:
            continue
        key = (entity.type, value.casefold())
        if key in merged:
            merged[key].mentions += max(1, entity.mentions)
        else:
            merged[key] = ExtractedEntity(entity.type, value, max(1, entity.mentions))
    return list(merged.values())


@dataclass
class Snapshot:
    """Compacted summary replacing a contiguous range of old messages."""

    id: str
    thread_id: str
    summary: str
    key_points: list[str]
    entities: list[ExtractedEntity]
    message_count: int
    token_count: int  # Estimated tokens of the original messages
    compressed_tokens: int  # Estimated tokens of the summary
    first_message_id: str
    last_message_id: str
    first_message_at: datetime
    last_message_at: datetime
    last_message_seq: int
    created_at: datetime

    @property
    def tokens_saved(self) -> int:
        return self.token_count - self.compressed_tokens

    @property
    def compression_ratio(self) -> float:
        """Fraction of the original tokens removed, 0.0-1.0."""
        if self.token_count <= 0:
            return 0.0
        return 1 - self.compressed_tokens / self.token_count

    def to_dict(self) -> dict:
        """Serialize to dict for export."""
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "summary": self.summary,
            "key_points": list(self.key_points),
            "entities": [e.to_dict() for e in self.entities],
            "message_count": self.message_count,
            "token_count": self.token_count,
            "compressed_tokens": self.compressed_tokens,
            "first_message_id": self.first_message_id,
            "last_message_id": self.last_message_id,
            "first_message_at": to_iso(self.first_message_at),
            "last_message_at": to_iso(self.last_message_at),
            "last_message_seq": self.last_message_seq,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Snapshot:
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            summary=data["summary"],
            key_points=list(data.get("key_points", [])),
            entities=[ExtractedEntity.from_dict(e) for e in data.get("entities", [])],
            message_count=data["message_count"],
            token_count=data["token_count"],
            compressed_tokens=data["compressed_tokens"],
            first_message_id=data["first_message_id"],
            last_message_id=data["last_message_id"],
            first_message_at=from_iso(data["first_message_at"]),
            last_message_at=from_iso(data["last_message_at"]),
            last_message_seq=data["last_message_seq"],
            created_at=from_iso(data["created_at"]),
        )


@dataclass
class ContextState:
    """Derived token accounting for a thread's active messages."""

    thread_id: str
    total_tokens: int
    active_message_count: int
    context_utilization: float  # Percent of budget; may exceed 100
    snapshot_count: int = 0
    last_snapshot_at: datetime | None = None
    stale: bool = False  # Served from last-known-good cache

    def to_dict(self) -> dict:
        return {
            "thread_id": self.thread_id,
            "total_tokens": self.total_tokens,
            "active_message_count": self.active_message_count,
            "context_utilization": self.context_utilization,
            "snapshot_count": self.snapshot_count,
            "last_snapshot_at": _iso_or_none(self.last_snapshot_at),
            "stale": self.stale,
        }


@dataclass
class ContextStatus:
    """State plus snapshot history overview, for display."""

    state: ContextState
    snapshot_count: int
    oldest_snapshot_date: datetime | None
    latest_snapshot_date: datetime | None
    estimated_conversation_length: str

    def to_dict(self) -> dict:
        return {
            "state": self.state.to_dict(),
            "snapshot_count": self.snapshot_count,
            "oldest_snapshot_date": _iso_or_none(self.oldest_snapshot_date),
            "latest_snapshot_date": _iso_or_none(self.latest_snapshot_date),
            "estimated_conversation_length": self.estimated_conversation_length,
        }


@dataclass
class SummaryDraft:
    """Generator output before token accounting."""

    summary: str
    key_points: list[str] = field(default_factory=list)
    entities: list[ExtractedEntity] = field(default_factory=list)


@dataclass
class SummarizationOutcome:
    """Result of a summarization attempt. Skips carry a reason."""

    snapshot: Snapshot | None = None
    reason: str | None = None

    @property
    def summarized(self) -> bool:
        return self.snapshot is not None


@dataclass
class TurnContext:
    """What to send downstream for one inbound turn."""

    context_messages: list[dict]
    state: ContextState
    summarization_triggered: bool = False
