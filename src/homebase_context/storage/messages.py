"""Append-only chat message store with the archived-range marker."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from pathlib import Path

from homebase_context.context.models import Message
from homebase_context.context.token_counter import TokenEstimator
from homebase_context.clock import ensure_utc
from homebase_context.storage.base import Database, from_iso, to_iso, utcnow, wrap_error
from homebase_context.storage.migrations import get_all_migrations

LOGGER = logging.getLogger(__name__)

_ONE_TICK = timedelta(microseconds=1)

_MESSAGE_COLUMNS = "seq, id, thread_id, role, content, estimated_tokens, created_at"


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        thread_id=row["thread_id"],
        role=row["role"],
        content=row["content"],
        created_at=from_iso(row["created_at"]),
        estimated_tokens=row["estimated_tokens"],
        seq=row["seq"],
    )


class MessageStore:
    """SQLite-backed message log. A message is active until a snapshot covers it."""

    def __init__(
        self,
        db: Database | Path | str,
        estimator: TokenEstimator | None = None,
    ) -> None:
        """Connect to or create homebase.db. Runs migrations if needed."""
        self._db = db if isinstance(db, Database) else Database(db)
        self._db.run_migrations(get_all_migrations())
        self.estimator = estimator or TokenEstimator()

    @property
    def conn(self) -> sqlite3.Connection:
        """Access underlying connection."""
        return self._db.conn

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    def append(
        self,
        thread_id: str,
        role: str,
        content: str,
        *,
        estimated_tokens: int | None = None,
        created_at: datetime | None = None,
        message_id: str | None = None,
    ) -> Message:
        """
        Append a message to a thread.

        Timestamps are kept strictly increasing per thread: a message that
        would not sort after the newest one is moved one microsecond past it.

        Args:
            thread_id: Thread key.
            role: user, assistant or system.
            content: Message text.
            estimated_tokens: Override the estimator (imports, tests).
            created_at: Override the creation time (naive values are UTC).
            message_id: Override the generated UUID.

        Returns:
            The stored Message with its seq assigned.
        """
        if estimated_tokens is None:
            estimated_tokens = self.estimator.estimate_message(role, content)
        created = ensure_utc(created_at) if created_at is not None else utcnow()
        msg_id = message_id or str(uuid.uuid4())

        try:
            with self._db.transaction(immediate=True) as conn:
                row = conn.execute(
                    "SELECT MAX(created_at) FROM message WHERE thread_id = ?",
                    (thread_id,),
                ).fetchone()
                if row[0] is not None:
                    latest = from_iso(row[0])
                    if created <= latest:
                        created = latest + _ONE_TICK

                cursor = conn.execute(
                    """
                    INSERT INTO message (
                        id, thread_id, role, content, estimated_tokens, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (msg_id, thread_id, role, content, estimated_tokens, to_iso(created)),
                )
                seq = cursor.lastrowid
        except sqlite3.Error as e:
            raise wrap_error(f"Append message to thread '{thread_id}' failed", e) from e

        LOGGER.debug(
            "Appended %s message #%d to thread %s (%d tokens)",
            role,
            seq,
            thread_id,
            estimated_tokens,
        )
        return Message(
            id=msg_id,
            thread_id=thread_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            created_at=created,
            estimated_tokens=estimated_tokens,
            seq=seq,
        )

    def list_active(self, thread_id: str) -> list[Message]:
        """Messages not covered by any snapshot, oldest first."""
        try:
            cursor = self.conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM message
                WHERE thread_id = ?
                  AND seq > COALESCE(
                      (SELECT archived_through_seq FROM context_marker
                       WHERE thread_id = ?), 0)
                ORDER BY created_at, seq
                """,
                (thread_id, thread_id),
            )
            return [_row_to_message(row) for row in cursor]
        except sqlite3.Error as e:
            raise wrap_error(f"List active messages for '{thread_id}' failed", e) from e

    def list_all(self, thread_id: str) -> list[Message]:
        """Every message of the thread, archived ones included, oldest first."""
        try:
            cursor = self.conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM message
                WHERE thread_id = ?
                ORDER BY created_at, seq
                """,
                (thread_id,),
            )
            return [_row_to_message(row) for row in cursor]
        except sqlite3.Error as e:
            raise wrap_error(f"List messages for '{thread_id}' failed", e) from e

    def count_archived(self, thread_id: str) -> int:
        """Number of messages logically archived behind snapshots."""
        try:
            row = self.conn.execute(
                """
                SELECT COUNT(*) FROM message
                WHERE thread_id = ?
                  AND seq <= COALESCE(
                      (SELECT archived_through_seq FROM context_marker
                       WHERE thread_id = ?), 0)
                """,
                (thread_id, thread_id),
            ).fetchone()
        except sqlite3.Error as e:
            raise wrap_error(f"Count archived messages for '{thread_id}' failed", e) from e
        return row[0]

    def thread_ids(self) -> list[str]:
        """All thread keys that have at least one message."""
        try:
            cursor = self.conn.execute(
                "SELECT DISTINCT thread_id FROM message ORDER BY thread_id"
            )
            return [row["thread_id"] for row in cursor]
        except sqlite3.Error as e:
            raise wrap_error("List threads failed", e) from e

    def reset_thread(self, thread_id: str) -> int:
        """
        Delete every message, snapshot and marker for a thread.

        Returns: Number of messages deleted.
        """
        try:
            with self._db.transaction(immediate=True) as conn:
                cursor = conn.execute(
                    "DELETE FROM message WHERE thread_id = ?", (thread_id,)
                )
                deleted = cursor.rowcount
                conn.execute(
                    "DELETE FROM memory_snapshot WHERE thread_id = ?", (thread_id,)
                )
                conn.execute(
                    "DELETE FROM context_marker WHERE thread_id = ?", (thread_id,)
                )
        except sqlite3.Error as e:
            raise wrap_error(f"Reset thread '{thread_id}' failed", e) from e

        LOGGER.info("Reset thread %s (%d messages deleted)", thread_id, deleted)
        return deleted
