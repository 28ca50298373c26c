"""Configuration for sender verification, extraction and mailbox polling."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from paywatch.emails.banks import all_bank_domains


class FilterConfig(BaseModel):
    """Configuration for sender verification."""

    allowed_domains: list[str] = Field(
        default_factory=all_bank_domains,
        description="Bank sender domains (auto-generated from BANK_MAPPINGS)",
    )

    @field_validator("allowed_domains")
    @classmethod
    def _normalize_domains(cls, domains: list[str]) -> list[str]:
        cleaned = {d.strip().lower().lstrip("@").lstrip(".") for d in domains}
        return sorted(d for d in cleaned if d)


class LLMConfig(BaseModel):
    """Configuration for the Gemini extraction call."""

    api_key: str | None = Field(default=None, description="Gemini API key")
    model: str = Field(default="gemini-1.5-flash", description="Model name")
    api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language API base URL",
    )
    timeout: float = Field(default=30.0, ge=1, le=120, description="Transport timeout in seconds")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0, description="Sampling temperature")
    max_output_tokens: int = Field(default=300, ge=50, le=1000, description="Output token budget")
    max_body_chars: int = Field(
        default=3000, ge=2000, le=5000, description="Body prefix sent to the model"
    )
    max_retries: int = Field(
        default=1, ge=0, le=3, description="Retries on transport errors and 5xx"
    )


class MailboxConfig(BaseModel):
    """Configuration for Gmail polling."""

    api_base: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users/me",
        description="Gmail REST API base for the authorized user",
    )
    batch_size: int = Field(default=5, ge=1, le=10, description="Max messages per poll")
    subject_keywords: list[str] = Field(
        default=["credit", "transaction", "alert"],
        description="Subject keywords the unread search must match",
    )
    timeout: float = Field(default=30.0, ge=1, le=120, description="Transport timeout in seconds")

    def search_query(self) -> str:
        """Gmail search restricted to unread payment-looking mail."""
        keywords = " OR ".join(f'"{k}"' for k in self.subject_keywords)
        return f"is:unread subject:({keywords})"


class PipelineConfig(BaseModel):
    """Configuration for the ingestion pipeline."""

    min_raw_content_length: int = Field(
        default=10, ge=1, description="Shorter stored content fails without a model call"
    )
    stale_processing_minutes: int = Field(
        default=15, ge=1, description="Rows left in processing this long are failed"
    )


class EmailConfig(BaseModel):
    """Complete email/ingestion configuration."""

    filter: FilterConfig = Field(default_factory=FilterConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    mailbox: MailboxConfig = Field(default_factory=MailboxConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    @classmethod
    def from_settings(cls, settings) -> EmailConfig:
        """Create EmailConfig from app settings."""
        filter_config = FilterConfig()
        if settings.ALLOWED_SENDER_DOMAINS:
            filter_config = FilterConfig(
                allowed_domains=settings.ALLOWED_SENDER_DOMAINS.split(",")
            )

        llm_config = LLMConfig(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GEMINI_MODEL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_body_chars=settings.EXTRACTION_MAX_CHARS,
        )

        mailbox_config = MailboxConfig(
            api_base=settings.GMAIL_API_BASE,
            batch_size=settings.POLL_BATCH_SIZE,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

        pipeline_config = PipelineConfig(
            stale_processing_minutes=settings.STALE_PROCESSING_MINUTES
        )

        return cls(
            filter=filter_config,
            llm=llm_config,
            mailbox=mailbox_config,
            pipeline=pipeline_config,
        )
