"""SQLite ledger of processed messages and pipeline runs."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from newsletter_ingestor.core.models import Message, RunProgress

logger = logging.getLogger(__name__)

# "recorded": rows reached the spreadsheet; "failed": storage write failed, retried next run
VALID_STATUSES = {"recorded", "failed"}


class ProcessedTracker:
    """Tracks which messages were recorded so watermark boundaries are not reprocessed.

    Tables:
    - messages: one row per message ID with its latest outcome
    - runs: audit log of pipeline runs
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> ProcessedTracker:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS messages (
                message_id TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL DEFAULT '',
                subject TEXT DEFAULT '',
                sender TEXT DEFAULT '',
                email_date TEXT DEFAULT '',
                status TEXT NOT NULL,
                extraction_status TEXT DEFAULT '',
                news_count INTEGER DEFAULT 0,
                error_message TEXT DEFAULT '',
                processed_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_status ON messages(status);

            CREATE TABLE IF NOT EXISTS runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                label TEXT NOT NULL,
                query TEXT NOT NULL DEFAULT '',
                started_at TEXT NOT NULL,
                completed_at TEXT,
                messages_found INTEGER DEFAULT 0,
                messages_processed INTEGER DEFAULT 0,
                messages_skipped INTEGER DEFAULT 0,
                extraction_failures INTEGER DEFAULT 0,
                storage_failures INTEGER DEFAULT 0,
                news_items_stored INTEGER DEFAULT 0
            );
        """)

    def is_recorded(self, message_id: str) -> bool:
        """True if the message already reached the spreadsheet in an earlier run."""
        row = self.conn.execute(
            "SELECT 1 FROM messages WHERE message_id = ? AND status = 'recorded'",
            (message_id,),
        ).fetchone()
        return row is not None

    def mark(
        self,
        message: Message,
        status: str,
        *,
        extraction_status: str = "",
        news_count: int = 0,
        error_message: str = "",
    ) -> None:
        """Insert or overwrite the outcome for a message."""
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {status}")

        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            """INSERT INTO messages
               (message_id, thread_id, subject, sender, email_date, status,
                extraction_status, news_count, error_message, processed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(message_id) DO UPDATE SET
                   status = excluded.status,
                   extraction_status = excluded.extraction_status,
                   news_count = excluded.news_count,
                   error_message = excluded.error_message,
                   processed_at = excluded.processed_at""",
            (
                message.message_id,
                message.thread_id,
                message.subject,
                message.sender,
                message.date.isoformat(),
                status,
                extraction_status,
                news_count,
                error_message,
                now,
            ),
        )
        self.conn.commit()

    def get_message(self, message_id: str) -> dict | None:
        """Get the ledger row for a message ID."""
        row = self.conn.execute(
            "SELECT * FROM messages WHERE message_id = ?", (message_id,)
        ).fetchone()
        return dict(row) if row else None

    def count_by_status(self) -> dict[str, int]:
        """Get count of messages grouped by status."""
        rows = self.conn.execute(
            "SELECT status, COUNT(*) as cnt FROM messages GROUP BY status"
        ).fetchall()
        return {row["status"]: row["cnt"] for row in rows}

    def start_run(self, label: str, query: str = "") -> int:
        """Record the start of a run. Returns the run_id."""
        now = datetime.now(UTC).isoformat()
        cursor = self.conn.execute(
            "INSERT INTO runs (label, query, started_at) VALUES (?, ?, ?)",
            (label, query, now),
        )
        self.conn.commit()
        return cursor.lastrowid or 0

    def complete_run(self, run_id: int, progress: RunProgress) -> None:
        """Record the completion of a run with its final counters."""
        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            """UPDATE runs SET
               completed_at = ?, messages_found = ?, messages_processed = ?,
               messages_skipped = ?, extraction_failures = ?, storage_failures = ?,
               news_items_stored = ?
               WHERE run_id = ?""",
            (
                now,
                progress.messages_found,
                progress.messages_processed,
                progress.messages_skipped,
                progress.extraction_failures,
                progress.storage_failures,
                progress.news_items_stored,
                run_id,
            ),
        )
        self.conn.commit()

    def update_query(self, run_id: int, query: str) -> None:
        """Attach the resolved mail query to a run once the watermark is known."""
        self.conn.execute("UPDATE runs SET query = ? WHERE run_id = ?", (query, run_id))
        self.conn.commit()
