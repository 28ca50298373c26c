from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Secrets are optional here; the ingestion endpoints check for them per
    request and report a configuration error when one is missing.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging and error detail."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging and development features."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses SQLite for development."""

    # Ingestion trigger
    INGEST_WEBHOOK_SECRET: Optional[str] = None
    """Shared secret expected in the X-Webhook-Secret header."""

    # LLM / Gemini
    GEMINI_API_KEY: Optional[str] = None
    """API key for the Gemini generative language API."""

    GEMINI_MODEL: str = "gemini-1.5-flash"
    """Gemini model used for payment extraction."""

    EXTRACTION_MAX_CHARS: int = 3000
    """Email body prefix (characters) sent to the model."""

    HTTP_TIMEOUT_SECONDS: float = 30.0
    """Transport timeout for outbound HTTP calls (Gemini, Gmail)."""

    # Mailbox / Gmail
    GMAIL_API_BASE: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    """Base URL of the Gmail REST API for the authorized user."""

    POLL_BATCH_SIZE: int = 5
    """Maximum mailbox messages claimed per poll request."""

    STALE_PROCESSING_MINUTES: int = 15
    """Rows stuck in processing this long are failed by the next batch."""

    FEED_MAX_QUEUE: int = 100
    """Per-subscriber change feed queue size; oldest events drop when full."""

    # Sender allow-list override (comma separated domains)
    ALLOWED_SENDER_DOMAINS: Optional[str] = None
    """Comma separated bank domains; defaults to the built-in bank table."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or "sqlite+aiosqlite:///./paywatch.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
