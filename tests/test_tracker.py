"""Tests for ProcessedTracker, the SQLite ledger of processed messages."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from newsletter_ingestor.core.models import Message, RunProgress
from newsletter_ingestor.storage.tracker import ProcessedTracker


@pytest.fixture
def tracker(tmp_db_path: Path) -> Iterator[ProcessedTracker]:
    with ProcessedTracker(tmp_db_path) as t:
        yield t


class TestConnect:
    def test_creates_tables(self, tracker: ProcessedTracker) -> None:
        rows = tracker.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        names = {row["name"] for row in rows}
        assert {"messages", "runs"} <= names

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        nested = tmp_path / "a" / "b" / "test.db"
        with ProcessedTracker(nested):
            pass
        assert nested.exists()

    def test_conn_requires_connect(self, tmp_db_path: Path) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            _ = ProcessedTracker(tmp_db_path).conn


class TestMark:
    def test_recorded_message_is_recorded(
        self, tracker: ProcessedTracker, sample_message: Message
    ) -> None:
        assert tracker.is_recorded(sample_message.message_id) is False

        tracker.mark(sample_message, "recorded", extraction_status="success", news_count=3)

        assert tracker.is_recorded(sample_message.message_id) is True
        row = tracker.get_message(sample_message.message_id)
        assert row is not None
        assert row["subject"] == "Daily Digest"
        assert row["news_count"] == 3
        assert row["email_date"] == "2024-01-15T10:30:00+00:00"

    def test_failed_message_is_not_recorded(
        self, tracker: ProcessedTracker, sample_message: Message
    ) -> None:
        tracker.mark(sample_message, "failed", error_message="quota exceeded")

        assert tracker.is_recorded(sample_message.message_id) is False
        row = tracker.get_message(sample_message.message_id)
        assert row is not None
        assert row["error_message"] == "quota exceeded"

    def test_later_outcome_overwrites(
        self, tracker: ProcessedTracker, sample_message: Message
    ) -> None:
        tracker.mark(sample_message, "failed", error_message="boom")
        tracker.mark(sample_message, "recorded", extraction_status="failure")

        row = tracker.get_message(sample_message.message_id)
        assert row is not None
        assert row["status"] == "recorded"
        assert row["error_message"] == ""
        assert tracker.count_by_status() == {"recorded": 1}

    def test_invalid_status_rejected(
        self, tracker: ProcessedTracker, sample_message: Message
    ) -> None:
        with pytest.raises(ValueError, match="Invalid status"):
            tracker.mark(sample_message, "pending")

    def test_unknown_message(self, tracker: ProcessedTracker) -> None:
        assert tracker.get_message("nope") is None


class TestRuns:
    def test_start_and_complete_run(self, tracker: ProcessedTracker) -> None:
        run_id = tracker.start_run("Newsletters")
        tracker.update_query(run_id, "label:Newsletters after:1")
        tracker.complete_run(
            run_id,
            RunProgress(messages_found=4, messages_processed=3, news_items_stored=7),
        )

        row = tracker.conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
        assert row["label"] == "Newsletters"
        assert row["query"] == "label:Newsletters after:1"
        assert row["completed_at"] is not None
        assert row["messages_found"] == 4
        assert row["messages_processed"] == 3
        assert row["news_items_stored"] == 7

    def test_run_ids_increment(self, tracker: ProcessedTracker) -> None:
        assert tracker.start_run("a") < tracker.start_run("b")
