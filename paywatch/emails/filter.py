"""Sender verification against the bank domain allow-list."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from paywatch.emails.models import FilterResult

if TYPE_CHECKING:
    from paywatch.emails.config import FilterConfig

logger = logging.getLogger(__name__)

_ANGLE_ADDRESS = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")
_BARE_ADDRESS = re.compile(r"([^\s<>\"',;:]+@[^\s<>\"',;:]+)")


def extract_sender_address(from_header: str | None) -> str:
    """Pull the email address out of ``Name <addr@domain>`` or a bare address.

    Returns an empty string when the header holds no address.
    """
    if not from_header:
        return ""

    match = _ANGLE_ADDRESS.search(from_header)
    if match:
        return match.group(1).strip()

    match = _BARE_ADDRESS.search(from_header)
    if match:
        return match.group(1).strip()

    return ""


def extract_sender_domain(from_header: str | None) -> str:
    """Lower-cased domain of the sender address, or "" if there is none."""
    address = extract_sender_address(from_header)
    if "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().strip(".").lower()


class SenderVerifier:
    """Fail-closed check that an email comes from a known bank domain."""

    def __init__(self, config: FilterConfig):
        """Initialize verifier.

        Args:
            config: Filter configuration holding the allow-list
        """
        self.config = config
        self._allowed = tuple(config.allowed_domains)

    def _match(self, domain: str) -> str | None:
        for allowed in self._allowed:
            if domain == allowed or domain.endswith("." + allowed):
                return allowed
        return None

    def verify(self, from_header: str | None) -> FilterResult:
        """Verify a From header.

        Args:
            from_header: Raw From header value

        Returns:
            FilterResult with the resolved domain and matching entry
        """
        domain = extract_sender_domain(from_header)
        if not domain:
            return FilterResult(
                passed=False,
                reason=f"No sender address in From header: {from_header!r}",
            )

        matched = self._match(domain)
        if matched is None:
            return FilterResult(
                passed=False,
                domain=domain,
                reason=f"Sender domain not allowed: {domain}",
            )

        logger.debug(f"Sender verified - domain: {domain}, matched: {matched}")
        return FilterResult(passed=True, domain=domain, matched_domain=matched)

    def is_allowed(self, from_header: str | None) -> bool:
        """Boolean form of :meth:`verify`."""
        return self.verify(from_header).passed
