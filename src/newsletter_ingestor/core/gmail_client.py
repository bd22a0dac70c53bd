"""Gmail API client: thread search and full thread retrieval."""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from newsletter_ingestor.core.exceptions import (
    NewsletterIngestorError,
    ParseError,
    RateLimitError,
)
from newsletter_ingestor.core.models import Message, Thread
from newsletter_ingestor.core.parser import GmailParser

logger = logging.getLogger(__name__)


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API 429 rate limit."""
    if isinstance(exc, HttpError) and exc.status_code == 429:
        return True
    error_str = str(exc)
    return "429" in error_str or "rateLimitExceeded" in error_str


def build_query(label: str, after: datetime | None = None) -> str:
    """Build a Gmail search query for messages under ``label`` newer than ``after``."""
    # Gmail label search replaces spaces with dashes
    parts = [f"label:{label.replace(' ', '-')}"]
    if after is not None:
        parts.append(f"after:{int(after.timestamp())}")
    return " ".join(parts)


class GmailClient:
    """Mail source: search threads and return their parsed messages."""

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        parser: GmailParser | None = None,
        max_results_per_page: int = 100,
        max_retries: int = 5,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        inter_page_delay_seconds: float = 0.2,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._parser = parser or GmailParser()
        self._page_size = max_results_per_page
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._inter_page_delay = inter_page_delay_seconds
        self._num_retries = num_retries

    def _execute_with_retry(self, request: Any, context: str) -> Any:
        """Execute one API request, backing off exponentially (with jitter) on 429.

        Raises:
            RateLimitError: When retries are exhausted on 429 errors.
            NewsletterIngestorError: On any other API error.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return request.execute(num_retries=self._num_retries)
            except Exception as e:
                if not _is_rate_limit_error(e):
                    raise NewsletterIngestorError(f"Failed to {context}: {e}") from e
                if attempt >= self._max_retries:
                    raise RateLimitError(
                        f"Rate limited during {context} after {self._max_retries} retries: {e}"
                    ) from e
                delay = random.uniform(0, min(backoff, self._max_backoff))
                logger.warning(
                    "Rate limited during %s (attempt %d/%d), sleeping %.2fs",
                    context, attempt + 1, self._max_retries, delay,
                )
                time.sleep(delay)
                backoff = min(backoff * 2, self._max_backoff)

        raise RateLimitError(f"Rate limited during {context} after {self._max_retries} retries")

    def list_thread_ids(self, query: str) -> list[str]:
        """Page through ``users.threads.list`` and return every matching thread ID."""
        thread_ids: list[str] = []
        page_token: str | None = None

        while True:
            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "q": query,
                "maxResults": self._page_size,
            }
            if page_token:
                kwargs["pageToken"] = page_token

            request = self._service.users().threads().list(**kwargs)
            response = self._execute_with_retry(request, "list threads")
            thread_ids.extend(t["id"] for t in response.get("threads", []))

            page_token = response.get("nextPageToken")
            if not page_token:
                break
            if self._inter_page_delay > 0:
                time.sleep(self._inter_page_delay)

        logger.debug("Query %r matched %d threads", query, len(thread_ids))
        return thread_ids

    def get_thread(self, thread_id: str) -> Thread:
        """Fetch one thread with full message bodies. Unparseable messages are skipped."""
        request = self._service.users().threads().get(
            userId=self._user_id, id=thread_id, format="full"
        )
        raw_thread = self._execute_with_retry(request, f"get thread {thread_id}")

        messages: list[Message] = []
        for raw_message in raw_thread.get("messages", []):
            try:
                messages.append(self._parser.parse(raw_message))
            except ParseError as e:
                logger.warning("Skipping unparseable message in thread %s: %s", thread_id, e)
        return Thread(thread_id=thread_id, messages=tuple(messages))

    def search(self, query: str) -> list[Thread]:
        """Return all threads matching a Gmail search query, messages in mailbox order."""
        threads = [self.get_thread(thread_id) for thread_id in self.list_thread_ids(query)]
        logger.info(
            "Found %d threads (%d messages) for %r",
            len(threads), sum(len(t.messages) for t in threads), query,
        )
        return threads
