"""Helpers for turning email payloads into plain text."""

from __future__ import annotations

import base64
import binascii
import html
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_BLOCK_TAGS = re.compile(r"<\s*(br|/p|/div|/tr|/li|/h[1-6])\b[^>]*>", re.IGNORECASE)
_DROP_BLOCKS = re.compile(r"<\s*(script|style|head)\b.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")
_SPACES = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def html_to_text(markup: str) -> str:
    """Strip tags from an HTML email body, keeping line breaks readable."""
    text = _DROP_BLOCKS.sub(" ", markup)
    text = _BLOCK_TAGS.sub("\n", text)
    text = _TAGS.sub(" ", text)
    text = html.unescape(text)
    text = _SPACES.sub(" ", text)
    text = _BLANK_LINES.sub("\n", text)
    return "\n".join(line.strip() for line in text.splitlines()).strip()


def select_body(text: str | None, html_body: str | None) -> str:
    """Prefer the plain-text body; fall back to HTML converted to text."""
    if text and text.strip():
        return text.strip()
    if html_body and html_body.strip():
        return html_to_text(html_body)
    return ""


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 body data (padding optional)."""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="ignore")
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Failed to decode message body: {e}")
        return ""


def _find_part(payload: dict[str, Any], mime_type: str) -> str | None:
    if payload.get("mimeType") == mime_type and payload.get("body", {}).get("data"):
        return decode_base64url(payload["body"]["data"])
    for part in payload.get("parts") or []:
        found = _find_part(part, mime_type)
        if found:
            return found
    return None


def gmail_message_body(message: dict[str, Any]) -> str:
    """
    Extract readable text from a Gmail ``format=full`` message.

    Order: single-part body data, first text/plain part (searched through
    nested multiparts), first text/html part, then the snippet.
    """
    payload = message.get("payload") or {}

    body_data = (payload.get("body") or {}).get("data")
    if body_data and not payload.get("parts"):
        decoded = decode_base64url(body_data)
        if payload.get("mimeType") == "text/html":
            return html_to_text(decoded)
        return decoded.strip()

    plain = _find_part(payload, "text/plain")
    if plain and plain.strip():
        return plain.strip()

    markup = _find_part(payload, "text/html")
    if markup and markup.strip():
        return html_to_text(markup)

    return (message.get("snippet") or "").strip()


def gmail_header(message: dict[str, Any], name: str) -> str:
    """Return a header value from a Gmail message, case-insensitively."""
    for header in (message.get("payload") or {}).get("headers") or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""
