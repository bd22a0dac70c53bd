"""Shared fixtures for Newsletter Ingestor tests."""

from __future__ import annotations

import base64
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from newsletter_ingestor.core.models import Message

SAMPLE_HTML = '<h1>Daily</h1><p>See <a href="https://example.com/a">this</a>.</p>'

SAMPLE_RESPONSE = (
    'Here you go: [{"title":"A","link":"LINK_001","description":"","category":"Tech"}]'
)


def encode_body(text: str) -> str:
    """Base64url-encode a body the way the Gmail API does (no padding)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_raw_message(
    message_id: str = "msg_001",
    *,
    thread_id: str = "thread_001",
    subject: str = "Daily Digest",
    sender: str = "news@example.com",
    internal_date_ms: int | None = 1705314600000,
    date_header: str = "Mon, 15 Jan 2024 10:30:00 +0000",
    plain: str | None = "Plain body",
    html: str | None = SAMPLE_HTML,
) -> dict[str, Any]:
    """Build a format=full Gmail API message dict with a multipart/alternative body."""
    parts: list[dict[str, Any]] = []
    if plain is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": encode_body(plain)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": encode_body(html)}})

    raw: dict[str, Any] = {
        "id": message_id,
        "threadId": thread_id,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
                {"name": "Date", "value": date_header},
            ],
            "parts": parts,
        },
    }
    if internal_date_ms is not None:
        raw["internalDate"] = str(internal_date_ms)
    return raw


@pytest.fixture
def sample_message() -> Message:
    """A parsed newsletter message with both body variants."""
    return Message(
        message_id="msg_001",
        thread_id="thread_001",
        subject="Daily Digest",
        date=datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC),
        sender="news@example.com",
        plain_body="Plain body",
        html_body=SAMPLE_HTML,
    )


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "test.db"
