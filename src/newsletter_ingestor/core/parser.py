"""Gmail API message parser: headers, MIME body variants and timestamps."""

from __future__ import annotations

import base64
import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from newsletter_ingestor.core.exceptions import ParseError
from newsletter_ingestor.core.models import Message

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_WANTED_HEADERS = ("subject", "from", "date")


class GmailParser:
    """Turn ``format=full`` Gmail message dicts into Message objects."""

    def parse(self, raw_message: dict[str, Any]) -> Message:
        """Parse a raw Gmail API message.

        Raises:
            ParseError: If the message structure is invalid.
        """
        try:
            payload = raw_message.get("payload", {})
            headers = self._headers(payload)
            plain_body, html_body = self._bodies(payload)

            return Message(
                message_id=raw_message["id"],
                thread_id=raw_message.get("threadId", ""),
                subject=headers.get("subject", "(no subject)"),
                date=self._message_date(raw_message, headers.get("date", "")),
                sender=headers.get("from", ""),
                plain_body=plain_body,
                html_body=html_body,
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Failed to parse message {raw_message.get('id', '?')}: {e}") from e

    @staticmethod
    def _headers(payload: dict[str, Any]) -> dict[str, str]:
        found: dict[str, str] = {}
        for header in payload.get("headers", []):
            name = header.get("name", "").lower()
            if name in _WANTED_HEADERS and name not in found:
                found[name] = header.get("value", "")
        return found

    def _bodies(self, payload: dict[str, Any]) -> tuple[str | None, str | None]:
        """Return the first text/plain and text/html parts, skipping attachments."""
        plain_text: str | None = None
        html: str | None = None

        stack = [payload]
        while stack and (plain_text is None or html is None):
            part = stack.pop(0)
            mime_type = part.get("mimeType", "")
            if mime_type.startswith("multipart/"):
                stack[:0] = [p for p in part.get("parts", []) if not p.get("filename")]
                continue

            data = part.get("body", {}).get("data")
            if not data:
                continue
            if mime_type == "text/html" and html is None:
                html = self._decode_body(data)
            elif mime_type == "text/plain" and plain_text is None:
                plain_text = self._decode_body(data)
            elif part is payload:
                # Single-part message with an unusual mime type
                decoded = self._decode_body(data)
                if "html" in mime_type:
                    html = decoded
                else:
                    plain_text = decoded

        return plain_text, html

    @staticmethod
    def _decode_body(data: str) -> str:
        # Gmail uses base64url without padding
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")

    @staticmethod
    def _message_date(raw_message: dict[str, Any], date_header: str) -> datetime:
        """Prefer Gmail's internalDate (what ``after:`` queries compare), then the Date header."""
        internal = raw_message.get("internalDate")
        if internal:
            try:
                return datetime.fromtimestamp(int(internal) / 1000, UTC)
            except (TypeError, ValueError, OverflowError):
                logger.warning("Bad internalDate %r on %s", internal, raw_message.get("id"))

        if date_header:
            try:
                parsed = parsedate_to_datetime(date_header)
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
            except (TypeError, ValueError):
                logger.warning("Failed to parse date: %s", date_header)
        return EPOCH
