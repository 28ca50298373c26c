"""Email handling for PayWatch.

This module handles:
- Sender verification against bank domains
- LLM-assisted payment extraction
- Gmail mailbox access
- Body decoding (plain text, HTML, Gmail payloads)
"""

# Lazy imports to avoid circular dependencies
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paywatch.emails.config import EmailConfig, FilterConfig, LLMConfig, MailboxConfig
    from paywatch.emails.filter import SenderVerifier
    from paywatch.emails.gmail_client import GmailClient
    from paywatch.emails.llm_client import ExtractionClient

__all__ = [
    "EmailConfig",
    "FilterConfig",
    "LLMConfig",
    "MailboxConfig",
    "SenderVerifier",
    "GmailClient",
    "ExtractionClient",
]
