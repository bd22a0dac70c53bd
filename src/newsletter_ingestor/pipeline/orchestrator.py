"""Pipeline orchestrator: search mail, extract news items, record them in the spreadsheet."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from newsletter_ingestor.config.settings import NewsletterIngestorSettings
from newsletter_ingestor.core.auth import authenticate, build_services
from newsletter_ingestor.core.budget import truncate
from newsletter_ingestor.core.exceptions import ConfigurationError
from newsletter_ingestor.core.extraction import ExtractionClient, GeminiModel
from newsletter_ingestor.core.gmail_client import GmailClient, build_query
from newsletter_ingestor.core.link_codec import LinkCodec
from newsletter_ingestor.core.models import (
    Message,
    NewsItem,
    ProcessedEmailRecord,
    RunProgress,
    Thread,
)
from newsletter_ingestor.core.normalizer import TextNormalizer
from newsletter_ingestor.storage.sheets import SheetStore
from newsletter_ingestor.storage.tracker import ProcessedTracker

logger = logging.getLogger(__name__)

FETCH_STATUS_OK = "success"


class NewsletterPipeline:
    """Turns newsletter emails into news rows, one message at a time.

    Each message is normalized, truncated and link-shortened, sent to the model,
    validated and link-restored, then written as news rows followed by the email row.

    Extraction failures are recorded with a failure status; storage failures are
    logged and skipped. Only a missing spreadsheet or setting aborts a run.
    """

    def __init__(
        self,
        settings: NewsletterIngestorSettings | None = None,
        on_progress: Callable[[RunProgress], None] | None = None,
        *,
        mail_client: GmailClient | None = None,
        store: SheetStore | None = None,
        extractor: ExtractionClient | None = None,
        tracker: ProcessedTracker | None = None,
    ) -> None:
        self._settings = settings or NewsletterIngestorSettings()
        self._on_progress = on_progress
        self._progress = RunProgress()

        self._normalizer = TextNormalizer()
        self._codec = LinkCodec(self._settings.link_prefix)

        # Collaborators not injected are built lazily
        self._mail_client = mail_client
        self._store = store
        self._extractor = extractor
        self._tracker = tracker

    @property
    def on_progress(self) -> Callable[[RunProgress], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[RunProgress], None] | None) -> None:
        self._on_progress = callback

    @property
    def progress(self) -> RunProgress:
        return self._progress

    def _ensure_initialized(self) -> tuple[GmailClient, SheetStore, ProcessedTracker]:
        """Build the mail, storage and ledger collaborators that were not injected.

        Raises:
            ConfigurationError: If a required setting is missing.
        """
        settings = self._settings

        if self._mail_client is None or self._store is None:
            if not settings.spreadsheet_id and self._store is None:
                raise ConfigurationError("NEWSLETTER_SPREADSHEET_ID is not set")
            settings.ensure_directories()
            creds = authenticate(settings.credentials_path, settings.token_path)
            gmail_service, sheets_service = build_services(creds)

            if self._mail_client is None:
                self._mail_client = GmailClient(
                    gmail_service,
                    max_results_per_page=settings.max_results_per_page,
                    max_retries=settings.gmail_max_retries,
                    initial_backoff_seconds=settings.initial_backoff_seconds,
                    max_backoff_seconds=settings.max_backoff_seconds,
                    inter_page_delay_seconds=settings.inter_page_delay_seconds,
                    num_retries=settings.num_retries,
                )
            if self._store is None:
                self._store = SheetStore(
                    sheets_service,
                    settings.spreadsheet_id,
                    emails_sheet=settings.emails_sheet,
                    news_sheet=settings.news_sheet,
                    max_cell_length=settings.max_cell_length,
                    num_retries=settings.num_retries,
                )

        if self._tracker is None:
            self._tracker = ProcessedTracker(settings.database_path)
            self._tracker.connect()

        return self._mail_client, self._store, self._tracker

    def _ensure_extractor(self) -> ExtractionClient:
        """Build the extraction client from settings unless one was injected.

        Raises:
            ConfigurationError: If no Gemini API key is configured.
        """
        settings = self._settings
        if self._extractor is None:
            if not settings.gemini_api_key:
                raise ConfigurationError("NEWSLETTER_GEMINI_API_KEY is not set")
            model = GeminiModel(
                settings.gemini_api_key,
                settings.gemini_model,
                endpoint=settings.gemini_endpoint,
                temperature=settings.temperature,
                top_p=settings.top_p,
                top_k=settings.top_k,
                max_output_tokens=settings.max_output_tokens,
                timeout_seconds=settings.request_timeout_seconds,
            )
            self._extractor = ExtractionClient(
                model,
                max_retries=settings.max_retries,
                retry_delay_seconds=settings.retry_delay_seconds,
                max_content_length=settings.max_cell_length,
            )
        return self._extractor

    def run(self, label: str | None = None, *, limit: int | None = None) -> RunProgress:
        """Process every new message under ``label`` since the watermark.

        Args:
            label: Gmail label (defaults to settings.label).
            limit: Cap on messages processed this run. None means unlimited.

        Returns:
            RunProgress with final counts.

        Raises:
            ConfigurationError: If settings or spreadsheet sheets are missing. No
                message is processed in that case.
        """
        label = label or self._settings.label
        mail_client, store, tracker = self._ensure_initialized()
        self._ensure_extractor()

        self._progress = RunProgress(current_stage="preflight")
        self._notify()
        store.ensure_sheets()

        run_id = tracker.start_run(label)
        try:
            since = self._resolve_since(store.get_watermark())
            query = build_query(label, since - timedelta(seconds=1))
            tracker.update_query(run_id, query)
            logger.info("Searching %r (watermark %s)", query, since.isoformat())

            self._progress.current_stage = "search"
            self._notify()
            messages = self._select_messages(mail_client.search(query), since, tracker)
            if limit is not None:
                messages = messages[:limit]
            logger.info("%d new message(s) to process", len(messages))

            self._progress.current_stage = "process"
            self._notify()
            for index, message in enumerate(messages, start=1):
                logger.info(
                    "Processing %d/%d: %s (%s)",
                    index, len(messages), message.subject, message.message_id,
                )
                self.process_message(message)

            self._progress.current_stage = "complete"
            self._notify()
        except Exception as e:
            self._progress.current_stage = f"error: {e}"
            self._notify()
            raise
        finally:
            tracker.complete_run(run_id, self._progress)

        logger.info(
            "Run complete: %d processed, %d news items, %d extraction failures, "
            "%d storage failures",
            self._progress.messages_processed,
            self._progress.news_items_stored,
            self._progress.extraction_failures,
            self._progress.storage_failures,
        )
        return self._progress

    def process_message(self, message: Message) -> ProcessedEmailRecord:
        """Extract, restore and record one message.

        Never raises for extraction or storage problems: the returned record
        carries the extraction status, and storage errors are logged.
        """
        _, store, tracker = self._ensure_initialized()
        extractor = self._ensure_extractor()
        max_length = self._settings.max_cell_length
        fetched_at = datetime.now(UTC)

        content = truncate(self._normalizer.normalize_message(message), max_length)
        shortened, link_map = self._codec.shorten(content)

        result = extractor.extract(
            content,
            shortened,
            {"message_id": message.message_id, "subject": message.subject},
        )

        items: list[NewsItem] = []
        if result.succeeded:
            validated = extractor.validate(list(result.items))
            items = self._codec.restore_links(validated, link_map)
        else:
            self._progress.extraction_failures += 1

        record = ProcessedEmailRecord(
            message_id=message.message_id,
            subject=message.subject,
            sender=message.sender,
            email_date=message.date,
            content=content,
            shortened_content=truncate(shortened, max_length),
            fetched_at=fetched_at,
            fetch_status=FETCH_STATUS_OK,
            extraction_status=result.status,
            news_count=len(items),
            raw_response=result.raw_response,
            link_map_json=self._codec.serialize(link_map),
        )

        # The email row goes last: its timestamp is what advances the watermark
        try:
            stored = store.append_news_items(items, message, fetched_at)
            store.append_email_record(record)
        except Exception as e:
            logger.error("Failed to record message %s: %s", message.message_id, e)
            self._progress.storage_failures += 1
            tracker.mark(
                message,
                "failed",
                extraction_status=result.status,
                news_count=len(items),
                error_message=str(e),
            )
        else:
            self._progress.news_items_stored += stored
            tracker.mark(
                message, "recorded", extraction_status=result.status, news_count=len(items)
            )
            logger.info(
                "Recorded %s: %s, %d news item(s)",
                message.message_id, result.status, len(items),
            )

        self._progress.messages_processed += 1
        self._notify()
        return record

    def get_watermark(self) -> datetime | None:
        """Latest recorded email timestamp in the store."""
        _, store, _ = self._ensure_initialized()
        return store.get_watermark()

    def get_status(self) -> dict[str, int]:
        """Ledger counts by status."""
        _, _, tracker = self._ensure_initialized()
        return tracker.count_by_status()

    def close(self) -> None:
        """Clean up resources."""
        if self._tracker:
            self._tracker.close()

    def _resolve_since(self, watermark: datetime | None) -> datetime:
        if watermark is not None:
            return watermark
        since = datetime.now(UTC) - timedelta(days=self._settings.initial_lookback_days)
        logger.info("No watermark yet, looking back %d days", self._settings.initial_lookback_days)
        return since

    def _select_messages(
        self, threads: list[Thread], since: datetime, tracker: ProcessedTracker
    ) -> list[Message]:
        """Flatten threads, oldest first, dropping old or already-recorded messages."""
        seen: set[str] = set()
        selected: list[Message] = []

        for thread in threads:
            for message in thread.messages:
                self._progress.messages_found += 1
                if message.message_id in seen:
                    continue
                seen.add(message.message_id)

                if message.date < since or tracker.is_recorded(message.message_id):
                    self._progress.messages_skipped += 1
                    continue
                selected.append(message)

        selected.sort(key=lambda m: m.date)
        return selected

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._progress)
