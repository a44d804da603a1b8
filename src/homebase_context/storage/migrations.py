"""Schema migrations for homebase.db."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Migration:
    """A single schema migration."""

    version: int
    name: str
    statements: list[str]


# Migration 001: messages, snapshots and the archived-range marker
MIGRATION_001_INITIAL = Migration(
    version=1,
    name="initial_schema",
    statements=[
        # Schema version tracking
        """
        CREATE TABLE schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """,
        # Chat messages, append-only
        """
        CREATE TABLE message (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            thread_id TEXT NOT NULL,
            role TEXT NOT NULL
                CHECK (role IN ('user', 'assistant', 'system')),
            content TEXT NOT NULL,
            estimated_tokens INTEGER NOT NULL CHECK (estimated_tokens >= 0),
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX idx_message_thread ON message(thread_id, seq)",
        # Compacted history, immutable once written
        """
        CREATE TABLE memory_snapshot (
            id TEXT PRIMARY KEY,
            thread_id TEXT NOT NULL,
            summary TEXT NOT NULL,
            key_points_json TEXT NOT NULL,
            entities_json TEXT NOT NULL,
            message_count INTEGER NOT NULL CHECK (message_count > 0),
            token_count INTEGER NOT NULL,
            compressed_tokens INTEGER NOT NULL,
            first_message_id TEXT NOT NULL,
            last_message_id TEXT NOT NULL,
            first_message_at TEXT NOT NULL,
            last_message_at TEXT NOT NULL,
            last_message_seq INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            CHECK (compressed_tokens < token_count),
            CHECK (first_message_at <= last_message_at)
        )
        """,
        "CREATE INDEX idx_snapshot_thread ON memory_snapshot(thread_id, created_at)",
        # Per-thread archived-range marker
        """
        CREATE TABLE context_marker (
            thread_id TEXT PRIMARY KEY,
            archived_through_seq INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        )
        """,
    ],
)

# Snapshot history is append-only
MIGRATION_002_SNAPSHOT_IMMUTABLE = Migration(
    version=2,
    name="snapshot_immutable_triggers",
    statements=[
        """
        CREATE TRIGGER memory_snapshot_no_update BEFORE UPDATE ON memory_snapshot
        BEGIN
            SELECT RAISE(ABORT, 'memory_snapshot rows are immutable');
        END
        """,
    ],
)

# All migrations in order
ALL_MIGRATIONS: list[Migration] = [
    MIGRATION_001_INITIAL,
    MIGRATION_002_SNAPSHOT_IMMUTABLE,
]


def get_all_migrations() -> list[Migration]:
    """Return all migrations in version order."""
    return ALL_MIGRATIONS
