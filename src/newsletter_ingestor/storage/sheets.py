"""Google Sheets store: append-only email and news rows plus the processing watermark."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from googleapiclient.discovery import Resource

from newsletter_ingestor.core.budget import MAX_CELL_LENGTH, truncate
from newsletter_ingestor.core.exceptions import ConfigurationError, StorageError
from newsletter_ingestor.core.models import Message, NewsItem, ProcessedEmailRecord

logger = logging.getLogger(__name__)

EMAIL_COLUMNS = (
    "subject",
    "content",
    "shortened_content",
    "email_date",
    "sender",
    "fetched_at",
    "fetched_at_unix",
    "fetch_status",
    "extraction_status",
    "news_count",
    "raw_response",
    "link_map",
    "message_id",
)

NEWS_COLUMNS = (
    "title",
    "description",
    "link",
    "category",
    "email_date",
    "sender",
    "fetched_at",
    "message_id",
)

# Column letter of email_date in the email sheet
_WATERMARK_COLUMN = chr(ord("A") + EMAIL_COLUMNS.index("email_date"))


class SheetStore:
    """Structured storage collaborator backed by one spreadsheet with two sheets.

    Rows are only ever appended; the sheets and their header rows must exist.
    """

    def __init__(
        self,
        service: Resource,
        spreadsheet_id: str,
        *,
        emails_sheet: str = "Emails",
        news_sheet: str = "News",
        max_cell_length: int = MAX_CELL_LENGTH,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._spreadsheet_id = spreadsheet_id
        self._emails_sheet = emails_sheet
        self._news_sheet = news_sheet
        self._max_cell_length = max_cell_length
        self._num_retries = num_retries

    def ensure_sheets(self) -> None:
        """Verify the spreadsheet is reachable and both sheets exist.

        Raises:
            ConfigurationError: If the spreadsheet ID is unset, unreachable, or a
                sheet is missing.
        """
        if not self._spreadsheet_id:
            raise ConfigurationError("No spreadsheet ID configured")

        try:
            response = (
                self._service.spreadsheets()
                .get(spreadsheetId=self._spreadsheet_id, fields="sheets.properties.title")
                .execute(num_retries=self._num_retries)
            )
        except Exception as e:
            raise ConfigurationError(
                f"Cannot open spreadsheet {self._spreadsheet_id}: {e}"
            ) from e

        titles = {s.get("properties", {}).get("title") for s in response.get("sheets", [])}
        missing = [name for name in (self._emails_sheet, self._news_sheet) if name not in titles]
        if missing:
            raise ConfigurationError(
                f"Spreadsheet {self._spreadsheet_id} is missing sheet(s): {', '.join(missing)}"
            )

    def get_watermark(self) -> datetime | None:
        """Return the latest email timestamp recorded so far, or None for an empty sheet."""
        column = _WATERMARK_COLUMN
        range_ = f"'{self._emails_sheet}'!{column}2:{column}"
        try:
            response = (
                self._service.spreadsheets()
                .values()
                .get(spreadsheetId=self._spreadsheet_id, range=range_)
                .execute(num_retries=self._num_retries)
            )
        except Exception as e:
            raise StorageError(f"Failed to read watermark from {range_}: {e}") from e

        latest: datetime | None = None
        for row in response.get("values", []):
            if not row:
                continue
            try:
                value = datetime.fromisoformat(str(row[0]))
            except ValueError:
                logger.debug("Ignoring unparseable timestamp %r in %s", row[0], range_)
                continue
            if value.tzinfo is None:
                continue
            if latest is None or value > latest:
                latest = value
        return latest

    def append_email_record(self, record: ProcessedEmailRecord) -> None:
        """Append the audit row for one processed message."""
        row = [
            self._cell(record.subject),
            self._cell(record.content),
            self._cell(record.shortened_content),
            record.email_date.isoformat(),
            self._cell(record.sender),
            record.fetched_at.isoformat(),
            record.fetched_at_unix,
            record.fetch_status,
            record.extraction_status,
            record.news_count,
            self._cell(record.raw_response),
            self._cell(record.link_map_json),
            record.message_id,
        ]
        self._append(self._emails_sheet, [row])

    def append_news_items(
        self, items: Sequence[NewsItem], message: Message, fetched_at: datetime
    ) -> int:
        """Append one row per news item. Returns the number of rows written."""
        if not items:
            return 0
        rows = [
            [
                self._cell(item.title),
                self._cell(item.description),
                self._cell(item.link),
                self._cell(item.category),
                message.date.isoformat(),
                self._cell(message.sender),
                fetched_at.isoformat(),
                message.message_id,
            ]
            for item in items
        ]
        self._append(self._news_sheet, rows)
        return len(rows)

    def _cell(self, value: str | None) -> str:
        return truncate(value, self._max_cell_length)

    def _append(self, sheet: str, rows: list[list[Any]]) -> None:
        try:
            (
                self._service.spreadsheets()
                .values()
                .append(
                    spreadsheetId=self._spreadsheet_id,
                    range=f"'{sheet}'!A1",
                    valueInputOption="RAW",
                    insertDataOption="INSERT_ROWS",
                    body={"values": rows},
                )
                .execute(num_retries=self._num_retries)
            )
        except Exception as e:
            raise StorageError(f"Failed to append {len(rows)} row(s) to {sheet}: {e}") from e
        logger.debug("Appended %d row(s) to %s", len(rows), sheet)
