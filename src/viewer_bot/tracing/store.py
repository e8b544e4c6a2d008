"""SQLite storage for interaction traces."""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from viewer_bot.tracing.context import TraceContext

logger = logging.getLogger(__name__)


@dataclass
class TraceSummary:
    """Lightweight summary of a trace for list views."""

    id: str
    created_at: datetime
    broadcaster_id: str
    source: str
    trigger_text: str
    outcome: str


class TraceStore:
    """SQLite-backed trace storage."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()
        logger.info(f"TraceStore initialized at {self.db_path}")

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS traces (
                id TEXT PRIMARY KEY,
                created_at TIMESTAMP NOT NULL,
                broadcaster_id TEXT NOT NULL,
                source TEXT NOT NULL,
                trigger_text TEXT,
                outcome TEXT NOT NULL,
                trace_json TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_traces_created ON traces(created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_traces_broadcaster ON traces(broadcaster_id);
        """)
        self._conn.commit()

    def save(self, trace: TraceContext) -> None:
        """Save a trace to the database."""
        self._conn.execute(
            """
            INSERT OR REPLACE INTO traces
            (id, created_at, broadcaster_id, source, trigger_text, outcome, trace_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                trace.id,
                trace.started_at.isoformat(),
                trace.broadcaster_id,
                trace.source,
                trace.trigger_text[:100],
                trace.outcome,
                json.dumps(trace.to_dict(), default=str),
            ),
        )
        self._conn.commit()
        logger.debug(f"Saved trace {trace.id[:8]}... outcome={trace.outcome}")

    def get(self, trace_id: str) -> TraceContext | None:
        """Get a trace by ID."""
        row = self._conn.execute(
            "SELECT trace_json FROM traces WHERE id = ?", (trace_id,)
        ).fetchone()
        if row is None:
            return None
        return TraceContext.from_dict(json.loads(row["trace_json"]))

    def recent(
        self,
        limit: int = 50,
        broadcaster_id: str | None = None,
        outcome: str | None = None,
    ) -> list[TraceSummary]:
        """Get recent trace summaries."""
        query = "SELECT id, created_at, broadcaster_id, source, trigger_text, outcome FROM traces"
        params: list = []
        conditions = []

        if broadcaster_id:
            conditions.append("broadcaster_id = ?")
            params.append(broadcaster_id)
        if outcome:
            conditions.append("outcome = ?")
            params.append(outcome)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        rows = self._conn.execute(query, params).fetchall()
        return [
            TraceSummary(
                id=row["id"],
                created_at=datetime.fromisoformat(row["created_at"]),
                broadcaster_id=row["broadcaster_id"],
                source=row["source"],
                trigger_text=row["trigger_text"] or "",
                outcome=row["outcome"],
            )
            for row in rows
        ]

    def prune(self, keep_last: int = 500) -> int:
        """Delete old traces, keeping the most recent. Returns count deleted."""
        cutoff = self._conn.execute(
            "SELECT created_at FROM traces ORDER BY created_at DESC LIMIT 1 OFFSET ?",
            (keep_last - 1,),
        ).fetchone()

        if cutoff is None:
            return 0  # Fewer traces than keep_last

        result = self._conn.execute(
            "DELETE FROM traces WHERE created_at < ?", (cutoff["created_at"],)
        )
        self._conn.commit()
        deleted = result.rowcount
        if deleted > 0:
            logger.info(f"Pruned {deleted} old traces")
        return deleted

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
