"""Data models for inbound emails and extraction results."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paywatch.emails.content import select_body

# Largest value the Numeric(15, 2) amount column stores.
MAX_AMOUNT = Decimal("1e13")


class InboundEmail(BaseModel):
    """An email delivered to the ingestion webhook."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(..., alias="from", description="Raw From header")
    subject: str = Field(default="", description="Email subject")
    text: str | None = Field(default=None, description="Plain text body")
    html: str | None = Field(default=None, description="HTML body")
    company_id: str = Field(..., description="Company the payment belongs to")
    message_id: str | None = Field(default=None, description="Source email id (dedup key)")

    @field_validator("message_id")
    @classmethod
    def _blank_message_id_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    def body_text(self) -> str:
        """Readable body: plain text if present, else HTML stripped of tags."""
        return select_body(self.text, self.html)


class MailboxMessage(BaseModel):
    """A message fetched from the connected Gmail mailbox."""

    id: str = Field(..., description="Gmail message id")
    sender: str = Field(default="", description="Raw From header")
    subject: str = Field(default="", description="Email subject")
    body: str = Field(default="", description="Decoded body text")


class ExtractedPayment(BaseModel):
    """Validated model output.

    ``amount`` must arrive as a JSON number; strings, booleans, non-finite
    values and amounts the amount column cannot hold are rejected.
    """

    amount: Decimal = Field(
        ..., gt=0, lt=MAX_AMOUNT, description="Payment amount, two decimals"
    )
    sender_name: str = Field(..., min_length=1, description="Payer name")
    bank_source: str = Field(default="Unknown", description="Bank label")

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_is_json_number(cls, value: Any) -> Decimal:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("amount must be a number")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("amount must be finite")
        try:
            return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise ValueError("amount is out of range") from e

    @field_validator("sender_name", mode="before")
    @classmethod
    def _sender_name_is_text(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("sender_name must be a string")
        return value.strip()

    @field_validator("bank_source", mode="before")
    @classmethod
    def _default_bank_source(cls, value: Any) -> str:
        if value is None:
            return "Unknown"
        text = str(value).strip()
        return text or "Unknown"


class FilterResult(BaseModel):
    """Result of sender verification."""

    passed: bool = Field(..., description="Whether the sender is an allowed bank")
    domain: str = Field(default="", description="Domain resolved from the From header")
    matched_domain: str | None = Field(default=None, description="Allow-list entry that matched")
    reason: str | None = Field(default=None, description="Reason for rejection")
