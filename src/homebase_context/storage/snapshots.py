"""SQLite-backed store for compacted conversation snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from homebase_context.context.models import ExtractedEntity, Snapshot
from homebase_context.storage.base import Database, from_iso, to_iso, utcnow, wrap_error
from homebase_context.storage.exceptions import (
    MessageNotFoundError,
    OverlapError,
    SnapshotNotFoundError,
)
from homebase_context.storage.migrations import get_all_migrations

LOGGER = logging.getLogger(__name__)

_SNAPSHOT_COLUMNS = """
    id, thread_id, summary, key_points_json, entities_json, message_count,
    token_count, compressed_tokens, first_message_id, last_message_id,
    first_message_at, last_message_at, last_message_seq, created_at
"""


@dataclass
class SnapshotCounts:
    """Snapshot history overview for one thread."""

    snapshot_count: int
    oldest_snapshot_date: datetime | None
    latest_snapshot_date: datetime | None
    summarized_message_count: int
    last_snapshot_at: datetime | None = None


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        thread_id=row["thread_id"],
        summary=row["summary"],
        key_points=json.loads(row["key_points_json"]),
        entities=[ExtractedEntity.from_dict(e) for e in json.loads(row["entities_json"])],
        message_count=row["message_count"],
        token_count=row["token_count"],
        compressed_tokens=row["compressed_tokens"],
        first_message_id=row["first_message_id"],
        last_message_id=row["last_message_id"],
        first_message_at=from_iso(row["first_message_at"]),
        last_message_at=from_iso(row["last_message_at"]),
        last_message_seq=row["last_message_seq"],
        created_at=from_iso(row["created_at"]),
    )


class SnapshotStore:
    """Append-only snapshot history. Creating a snapshot archives its range."""

    def __init__(self, db: Database | Path | str) -> None:
        """Connect to or create homebase.db. Runs migrations if needed."""
        self._db = db if isinstance(db, Database) else Database(db)
        self._db.run_migrations(get_all_migrations())

    @property
    def conn(self) -> sqlite3.Connection:
        """Access underlying connection."""
        return self._db.conn

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    def create(self, snapshot: Snapshot) -> str:
        """
        Persist a snapshot and archive the messages it covers, atomically.

        The archived-range marker moves to ``snapshot.last_message_seq`` in
        the same transaction as the insert, so a crash leaves either both
        effects or neither.

        Args:
            snapshot: Fully populated snapshot.

        Returns:
            The snapshot ID.

        Raises:
            OverlapError: The covered range starts at or before messages that
                are already archived (a concurrent summarization won).
            MessageNotFoundError: The first covered message is gone (the
                thread was reset meanwhile).
            ValueError: The snapshot does not shrink its range or its
                timestamps are out of order.
            DatabaseError: On any other storage failure.
        """
        if snapshot.compressed_tokens >= snapshot.token_count:
            raise ValueError(
                f"Snapshot must shrink: {snapshot.compressed_tokens} >= "
                f"{snapshot.token_count} tokens"
            )
        if snapshot.first_message_at > snapshot.last_message_at:
            raise ValueError("Snapshot first_message_at is after last_message_at")

        try:
            with self._db.transaction(immediate=True) as conn:
                row = conn.execute(
                    "SELECT archived_through_seq FROM context_marker WHERE thread_id = ?",
                    (snapshot.thread_id,),
                ).fetchone()
                archived_through = row["archived_through_seq"] if row else 0

                first = conn.execute(
                    "SELECT seq FROM message WHERE id = ? AND thread_id = ?",
                    (snapshot.first_message_id, snapshot.thread_id),
                ).fetchone()
                if first is None:
                    raise MessageNotFoundError(snapshot.first_message_id, snapshot.thread_id)
                first_seq = first["seq"]
                if first_seq <= archived_through:
                    raise OverlapError(snapshot.thread_id, first_seq, archived_through)

                conn.execute(
                    f"""
                    INSERT INTO memory_snapshot ({_SNAPSHOT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        snapshot.id,
                        snapshot.thread_id,
                        snapshot.summary,
                        json.dumps(snapshot.key_points),
                        json.dumps([e.to_dict() for e in snapshot.entities]),
                        snapshot.message_count,
                        snapshot.token_count,
                        snapshot.compressed_tokens,
                        snapshot.first_message_id,
                        snapshot.last_message_id,
                        to_iso(snapshot.first_message_at),
                        to_iso(snapshot.last_message_at),
                        snapshot.last_message_seq,
                        to_iso(snapshot.created_at),
                    ),
                )
                conn.execute(
                    """
                    INSERT INTO context_marker (thread_id, archived_through_seq, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(thread_id) DO UPDATE SET
                        archived_through_seq = excluded.archived_through_seq,
                        updated_at = excluded.updated_at
                    """,
                    (snapshot.thread_id, snapshot.last_message_seq, to_iso(utcnow())),
                )
        except sqlite3.Error as e:
            raise wrap_error(f"Create snapshot for '{snapshot.thread_id}' failed", e) from e

        LOGGER.debug(
            "Stored snapshot %s for thread %s (archived through #%d)",
            snapshot.id,
            snapshot.thread_id,
            snapshot.last_message_seq,
        )
        return snapshot.id

    def get(self, snapshot_id: str) -> Snapshot:
        """Fetch snapshot by ID."""
        try:
            row = self.conn.execute(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM memory_snapshot WHERE id = ?",
                (snapshot_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise wrap_error(f"Get snapshot {snapshot_id} failed", e) from e
        if row is None:
            raise SnapshotNotFoundError(snapshot_id)
        return _row_to_snapshot(row)

    def list(self, thread_id: str) -> list[Snapshot]:
        """List snapshots for a thread, oldest first."""
        try:
            cursor = self.conn.execute(
                f"""
                SELECT {_SNAPSHOT_COLUMNS}
                FROM memory_snapshot
                WHERE thread_id = ?
                ORDER BY created_at, last_message_seq
                """,
                (thread_id,),
            )
            return [_row_to_snapshot(row) for row in cursor]
        except sqlite3.Error as e:
            raise wrap_error(f"List snapshots for '{thread_id}' failed", e) from e

    def counts_for_thread(self, thread_id: str) -> SnapshotCounts:
        """Count snapshots and report the covered date range."""
        try:
            row = self.conn.execute(
                """
                SELECT COUNT(*) AS cnt,
                       MIN(first_message_at) AS oldest,
                       MAX(last_message_at) AS latest,
                       COALESCE(SUM(message_count), 0) AS summarized,
                       MAX(created_at) AS last_created
                FROM memory_snapshot
                WHERE thread_id = ?
                """,
                (thread_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise wrap_error(f"Count snapshots for '{thread_id}' failed", e) from e

        return SnapshotCounts(
            snapshot_count=row["cnt"],
            oldest_snapshot_date=from_iso(row["oldest"]) if row["oldest"] else None,
            latest_snapshot_date=from_iso(row["latest"]) if row["latest"] else None,
            summarized_message_count=row["summarized"],
            last_snapshot_at=from_iso(row["last_created"]) if row["last_created"] else None,
        )
