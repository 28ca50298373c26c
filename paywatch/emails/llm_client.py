"""LLM client for payment extraction using the Gemini API."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from paywatch.emails.models import ExtractedPayment
from paywatch.ingestion.errors import ConfigurationError

if TYPE_CHECKING:
    from paywatch.emails.config import LLMConfig

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json|JSON)?\s*\n?|```")

EXTRACTION_PROMPT = """Analyze this raw bank alert email. Extract the numeric Amount credited, the Bank Name, and clean up the Sender Name (the person or business who paid).
Return strictly a JSON object with keys: amount (number, no currency symbols or commas), sender_name (string), bank_source (string).
If the email is not a payment received or you cannot find valid payment data, return null.
Return only the JSON object or null, no markdown, no explanation.

From: {sender}
Subject: {subject}
Text:
{body}"""


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences the model sometimes wraps JSON in."""
    return _CODE_FENCE.sub("", text).strip()


def parse_extraction_response(text: str | None) -> ExtractedPayment | None:
    """Decode and validate raw model output.

    Args:
        text: Raw response text

    Returns:
        ExtractedPayment, or None for null, non-JSON, non-object or invalid
        payloads
    """
    if not text:
        return None

    cleaned = strip_code_fences(text)
    if not cleaned or cleaned.lower() == "null":
        return None

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning(f"[EXTRACT] Model response is not JSON: {text[:200]!r}")
        return None

    if not isinstance(data, dict):
        logger.info(f"[EXTRACT] Model returned no payment object ({type(data).__name__})")
        return None

    try:
        return ExtractedPayment.model_validate(data)
    except ValidationError as e:
        logger.info(f"[EXTRACT] Model output failed validation: {e.error_count()} error(s)")
        return None


class ExtractionClient:
    """Client for LLM-assisted payment extraction using the Gemini API."""

    def __init__(
        self,
        config: LLMConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize extraction client.

        Args:
            config: LLM configuration
            transport: Optional httpx transport (tests inject a MockTransport)

        Raises:
            ConfigurationError: If no API key is configured
        """
        self.config = config
        self._transport = transport
        if not self.config.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_base}/models/{self.config.model}:generateContent"

    def build_prompt(self, subject: str, sender: str, body: str) -> str:
        """Build the extraction prompt, truncating the body to the configured prefix."""
        return EXTRACTION_PROMPT.format(
            sender=sender or "",
            subject=subject or "",
            body=(body or "")[: self.config.max_body_chars],
        )

    async def extract_payment(
        self, subject: str, sender: str, body: str
    ) -> ExtractedPayment | None:
        """Extract payment fields from an email.

        Args:
            subject: Email subject
            sender: Raw From header
            body: Email body text

        Returns:
            Validated payment, or None when nothing usable was found or the
            API could not be reached
        """
        prompt = self.build_prompt(subject, sender, body)

        try:
            response_text = await self._call_llm(prompt)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError, RuntimeError) as e:
            logger.error(f"[EXTRACT] Gemini call failed: {e}")
            return None

        try:
            extracted = parse_extraction_response(response_text)
        except Exception as e:
            logger.error(f"[EXTRACT] Could not parse model output: {e}", exc_info=True)
            return None

        if extracted:
            logger.info(
                f"[EXTRACT] ✓ Extracted payment: amount={extracted.amount}, "
                f"bank={extracted.bank_source}"
            )
        return extracted

    async def _call_llm(self, prompt: str) -> str:
        """Call Gemini generateContent.

        Args:
            prompt: Prompt text

        Returns:
            Text of the first candidate
        """
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }

        async with httpx.AsyncClient(
            timeout=self.config.timeout, transport=self._transport
        ) as client:
            for attempt in range(self.config.max_retries + 1):
                try:
                    response = await client.post(
                        self.endpoint,
                        params={"key": self.config.api_key},
                        json=payload,
                    )
                    response.raise_for_status()

                    data = response.json()
                    parts = data["candidates"][0]["content"]["parts"]
                    return "".join(part.get("text", "") for part in parts).strip()

                except httpx.HTTPStatusError as e:
                    logger.error(
                        f"HTTP error from Gemini API (attempt {attempt + 1}): "
                        f"{e.response.status_code} {e.response.text[:200]}"
                    )
                    if e.response.status_code < 500 or attempt == self.config.max_retries:
                        raise
                except httpx.TransportError as e:
                    logger.error(f"Error calling Gemini API (attempt {attempt + 1}): {e}")
                    if attempt == self.config.max_retries:
                        raise

        raise RuntimeError("Failed to call LLM after all retries")
