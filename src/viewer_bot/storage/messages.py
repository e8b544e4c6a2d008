"""SQLite storage for chat and transcript events."""

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from viewer_bot.models import ChatEvent, SourceType

logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only log of ChatEvents per broadcaster.

    Inserts are idempotent on ``(broadcaster_id, provider_message_id)`` so an
    at-least-once webhook delivery never produces two rows for one message.
    """

    def __init__(self, db_path: Path | str, max_per_channel: int = 1000):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._max_per_channel = max_per_channel
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()
        logger.info(f"MessageStore initialized at {self.db_path}")

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS chat_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                broadcaster_id TEXT NOT NULL,
                provider_message_id TEXT NOT NULL,
                chatter_id TEXT NOT NULL,
                chatter_name TEXT NOT NULL,
                text TEXT NOT NULL,
                source_type TEXT NOT NULL DEFAULT 'twitch',
                created_at TIMESTAMP NOT NULL,
                responded_to INTEGER NOT NULL DEFAULT 0,
                UNIQUE (broadcaster_id, provider_message_id)
            );
            CREATE INDEX IF NOT EXISTS idx_chat_events_broadcaster_time
                ON chat_events(broadcaster_id, created_at DESC);
        """)
        self._conn.commit()

    def _row_to_event(self, row: sqlite3.Row) -> ChatEvent:
        return ChatEvent(
            id=row["id"],
            broadcaster_id=row["broadcaster_id"],
            provider_message_id=row["provider_message_id"],
            chatter_id=row["chatter_id"],
            chatter_name=row["chatter_name"],
            text=row["text"],
            source_type=SourceType(row["source_type"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            responded_to=bool(row["responded_to"]),
        )

    def insert(self, event: ChatEvent) -> ChatEvent | None:
        """Store an event.

        Returns the stored event with its id, or None if the provider message
        id was already recorded for this broadcaster.
        """
        cursor = self._conn.execute(
            """
            INSERT OR IGNORE INTO chat_events
            (broadcaster_id, provider_message_id, chatter_id, chatter_name,
             text, source_type, created_at, responded_to)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.broadcaster_id,
                event.provider_message_id,
                event.chatter_id,
                event.chatter_name,
                event.text,
                event.source_type.value,
                event.created_at.isoformat(),
                1 if event.responded_to else 0,
            ),
        )
        if cursor.rowcount == 0:
            self._conn.commit()
            logger.debug(
                f"Duplicate event {event.provider_message_id} for {event.broadcaster_id}"
            )
            return None

        event_id = cursor.lastrowid

        # Cleanup: delete events beyond max_per_channel
        self._conn.execute(
            """
            DELETE FROM chat_events
            WHERE broadcaster_id = ? AND id NOT IN (
                SELECT id FROM chat_events
                WHERE broadcaster_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            )
            """,
            (event.broadcaster_id, event.broadcaster_id, self._max_per_channel),
        )
        self._conn.commit()
        return replace(event, id=event_id)

    def query_recent(self, broadcaster_id: str, limit: int = 10) -> list[ChatEvent]:
        """Load the most recent events for a broadcaster, newest first."""
        rows = self._conn.execute(
            """
            SELECT * FROM chat_events
            WHERE broadcaster_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (broadcaster_id, limit),
        ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def get(self, event_id: int) -> ChatEvent | None:
        row = self._conn.execute(
            "SELECT * FROM chat_events WHERE id = ?", (event_id,)
        ).fetchone()
        return self._row_to_event(row) if row else None

    def mark_responded(self, event_id: int) -> bool:
        """Flip ``responded_to``. Returns False if the event does not exist."""
        cursor = self._conn.execute(
            "UPDATE chat_events SET responded_to = 1 WHERE id = ?", (event_id,)
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def count(self, broadcaster_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM chat_events WHERE broadcaster_id = ?",
            (broadcaster_id,),
        ).fetchone()
        return row["n"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
