"""SQLite storage for per-channel bot settings and live status."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from viewer_bot.models import ChannelSubscriptionState

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "broadcaster_name",
    "is_live",
    "bot_enabled",
    "bot_prompt",
    "cooldown_seconds",
    "last_interaction_at",
})


class ChannelSettingsStore:
    """One row per (platform, broadcaster). Rows are updated, never deleted."""

    def __init__(self, db_path: Path | str, platform: str = "twitch"):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._platform = platform
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()
        logger.info(f"ChannelSettingsStore initialized at {self.db_path}")

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS channel_settings (
                platform TEXT NOT NULL,
                broadcaster_id TEXT NOT NULL,
                broadcaster_name TEXT NOT NULL DEFAULT '',
                is_live INTEGER NOT NULL DEFAULT 0,
                bot_enabled INTEGER NOT NULL DEFAULT 0,
                bot_prompt TEXT NOT NULL DEFAULT '',
                cooldown_seconds INTEGER,
                last_interaction_at TIMESTAMP,
                PRIMARY KEY (platform, broadcaster_id)
            );
        """)
        self._conn.commit()

    def _row_to_state(self, row: sqlite3.Row) -> ChannelSubscriptionState:
        last = row["last_interaction_at"]
        return ChannelSubscriptionState(
            platform=row["platform"],
            broadcaster_id=row["broadcaster_id"],
            broadcaster_name=row["broadcaster_name"],
            is_live=bool(row["is_live"]),
            bot_enabled=bool(row["bot_enabled"]),
            bot_prompt=row["bot_prompt"],
            cooldown_seconds=row["cooldown_seconds"],
            last_interaction_at=datetime.fromisoformat(last) if last else None,
        )

    def get(self, broadcaster_id: str) -> ChannelSubscriptionState | None:
        row = self._conn.execute(
            "SELECT * FROM channel_settings WHERE platform = ? AND broadcaster_id = ?",
            (self._platform, broadcaster_id),
        ).fetchone()
        return self._row_to_state(row) if row else None

    def update(self, broadcaster_id: str, **changes: Any) -> ChannelSubscriptionState:
        """Apply a partial update, creating the row with defaults if needed."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown channel fields: {sorted(unknown)}")

        self._conn.execute(
            "INSERT OR IGNORE INTO channel_settings (platform, broadcaster_id) VALUES (?, ?)",
            (self._platform, broadcaster_id),
        )

        if changes:
            columns = sorted(changes)
            values = [self._to_column(changes[c]) for c in columns]
            assignments = ", ".join(f"{c} = ?" for c in columns)
            self._conn.execute(
                f"UPDATE channel_settings SET {assignments} "
                "WHERE platform = ? AND broadcaster_id = ?",
                (*values, self._platform, broadcaster_id),
            )
        row = self._conn.execute(
            "SELECT * FROM channel_settings WHERE platform = ? AND broadcaster_id = ?",
            (self._platform, broadcaster_id),
        ).fetchone()
        self._conn.commit()
        return self._row_to_state(row)

    @staticmethod
    def _to_column(value: Any) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def list_active(self) -> list[ChannelSubscriptionState]:
        """Channels that are live with the bot enabled."""
        rows = self._conn.execute(
            "SELECT * FROM channel_settings "
            "WHERE platform = ? AND is_live = 1 AND bot_enabled = 1 "
            "ORDER BY broadcaster_id",
            (self._platform,),
        ).fetchall()
        return [self._row_to_state(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
