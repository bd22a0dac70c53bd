"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class NewsletterIngestorSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="NEWSLETTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth credentials (shared by Gmail and Sheets)
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")

    # Mail source
    label: str = "Newsletters"
    max_results_per_page: int = 100
    initial_lookback_days: int = 7

    # Spreadsheet store
    spreadsheet_id: str = ""
    emails_sheet: str = "Emails"
    news_sheet: str = "News"
    max_cell_length: int = 49999

    # Generative model
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    gemini_endpoint: str = "https://generativelanguage.googleapis.com/v1beta"
    temperature: float = 0.2
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192
    request_timeout_seconds: float | None = 120.0

    # Extraction retry (fixed delay, bounded attempts)
    max_retries: int = 3
    retry_delay_seconds: float = 2.0

    # Link shortening
    link_prefix: str = "LINK_"

    # Local ledger of processed messages
    database_path: Path = Path("data/newsletter_ingestor.db")

    # Gmail rate limiting
    gmail_max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    inter_page_delay_seconds: float = 0.2
    num_retries: int = 3

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create data and credentials directories if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
