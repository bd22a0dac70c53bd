"""Frozen dataclasses for the Newsletter Ingestor domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Extraction outcome for a single message
STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"
EXTRACTION_STATUSES = {STATUS_SUCCESS, STATUS_FAILURE}

# Token -> original URL, insertion-ordered by token index
LinkMap = dict[str, str]


@dataclass(frozen=True)
class Message:
    """A single fetched newsletter email. At least one body variant is normally set."""

    message_id: str
    thread_id: str
    subject: str
    date: datetime
    sender: str
    plain_body: str | None = None
    html_body: str | None = None


@dataclass(frozen=True)
class Thread:
    """A mail thread with its messages in mailbox order."""

    thread_id: str
    messages: tuple[Message, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class NewsItem:
    """One extracted article. ``link`` holds a short token until links are restored."""

    link: str
    title: str = ""
    description: str = ""
    category: str = ""


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of sending one message to the generative model."""

    status: str
    news_count: int = 0
    raw_response: str | None = None
    items: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


@dataclass(frozen=True)
class ProcessedEmailRecord:
    """Append-only audit row written once per processed message."""

    message_id: str
    subject: str
    sender: str
    email_date: datetime
    content: str
    shortened_content: str
    fetched_at: datetime
    fetch_status: str
    extraction_status: str
    news_count: int
    raw_response: str | None
    link_map_json: str

    @property
    def fetched_at_unix(self) -> int:
        return int(self.fetched_at.timestamp())


@dataclass
class RunProgress:
    """Mutable progress tracker for pipeline status reporting."""

    messages_found: int = 0
    messages_processed: int = 0
    messages_skipped: int = 0
    extraction_failures: int = 0
    storage_failures: int = 0
    news_items_stored: int = 0
    current_stage: str = "idle"
