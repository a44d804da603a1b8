"""Shared pytest fixtures for homebase-context tests."""

from __future__ import annotations

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from homebase_context.config import ContextConfig
from homebase_context.context.models import SummaryDraft
from homebase_context.context.summarizer import SummaryGenerator
from homebase_context.service import ContextService
from homebase_context.storage import Database, MessageStore, SnapshotStore

# 280 chars -> 70 tokens + 10 overhead = 80 tokens per message
EIGHTY_TOKEN_TEXT = "x" * 280

BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class StubGenerator(SummaryGenerator):
    """Returns a fixed draft and records the windows it was given."""

    def __init__(self, draft: SummaryDraft | None = None, error: Exception | None = None):
        self.draft = draft or SummaryDraft(
            summary="Discussed the launch plan.",
            key_points=["Ship Friday"],
        )
        self.error = error
        self.calls: list[list] = []

    def generate(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.draft


@pytest.fixture
def temp_db_path() -> Path:
    """Create a temporary database file path.

    Returns:
        Path to a temporary .db file (file created but empty).
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        return Path(f.name)


@pytest.fixture
def db(temp_db_path: Path):
    database = Database(temp_db_path)
    yield database
    database.close()


@pytest.fixture
def message_store(db: Database) -> MessageStore:
    return MessageStore(db)


@pytest.fixture
def snapshot_store(db: Database) -> SnapshotStore:
    return SnapshotStore(db)


@pytest.fixture
def stub_generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def small_config(temp_db_path: Path) -> ContextConfig:
    """1000-token budget, no caching, so every read hits the store."""
    return ContextConfig(
        max_context_tokens=1000,
        state_cache_ttl=0,
        lock_timeout=1.0,
        db_path=temp_db_path,
    )


@pytest.fixture
def service(small_config: ContextConfig, stub_generator: StubGenerator):
    svc = ContextService(small_config, generator=stub_generator)
    yield svc
    svc.close()


def add_messages(
    store: MessageStore,
    thread_id: str,
    count: int,
    tokens: int = 80,
    start: datetime = BASE_TIME,
) -> list:
    """Append ``count`` alternating user/assistant messages a minute apart."""
    added = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        added.append(
            store.append(
                thread_id,
                role,
                f"message {i}",
                estimated_tokens=tokens,
                created_at=start + timedelta(minutes=i),
            )
        )
    return added


def make_snapshot(window: list, summary: str = "Short summary.", **overrides):
    """Build a snapshot covering ``window`` that compresses to a few tokens."""
    from homebase_context.context.models import Snapshot

    fields = dict(
        id=f"snap-{window[0].seq}-{window[-1].seq}",
        thread_id=window[0].thread_id,
        summary=summary,
        key_points=[],
        entities=[],
        message_count=len(window),
        token_count=sum(m.estimated_tokens for m in window),
        compressed_tokens=4,
        first_message_id=window[0].id,
        last_message_id=window[-1].id,
        first_message_at=window[0].created_at,
        last_message_at=window[-1].created_at,
        last_message_seq=window[-1].seq,
        created_at=window[-1].created_at + timedelta(seconds=1),
    )
    fields.update(overrides)
    return Snapshot(**fields)
