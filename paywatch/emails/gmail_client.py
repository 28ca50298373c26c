"""Gmail REST client for polling unread bank alerts."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from paywatch.emails.content import gmail_header, gmail_message_body
from paywatch.emails.models import MailboxMessage

if TYPE_CHECKING:
    from paywatch.emails.config import MailboxConfig

logger = logging.getLogger(__name__)


class MailboxError(Exception):
    """Base exception for mailbox API errors."""

    pass


class MailboxAuthError(MailboxError):
    """Raised when the mailbox rejects the access token."""

    pass


class GmailClient:
    """Client for the Gmail API of a single authorized user.

    The access token is only ever held server-side for the duration of one
    poll request.

    Usage:
        async with GmailClient(token, config) as mailbox:
            ids = await mailbox.list_unread_ids()
    """

    def __init__(
        self,
        access_token: str,
        config: MailboxConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Gmail client.

        Args:
            access_token: OAuth access token with gmail.modify scope
            config: Mailbox configuration
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        if not access_token:
            raise MailboxAuthError("Gmail access token is required")

        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.api_base,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> GmailClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise MailboxError(f"Gmail request failed: {e}") from e

        if response.status_code in (401, 403):
            raise MailboxAuthError(f"Gmail rejected access token: {response.status_code}")
        if response.is_error:
            raise MailboxError(f"Gmail {method} {url} error: {response.status_code}")

        if not response.content:
            return {}
        return response.json()

    async def list_unread_ids(self, limit: int | None = None) -> list[str]:
        """List unread messages matching payment subject keywords.

        Args:
            limit: Maximum number of ids (defaults to config.batch_size)

        Returns:
            Gmail message ids, newest first as returned by the API
        """
        limit = limit or self.config.batch_size
        data = await self._request(
            "GET",
            "/messages",
            params={"q": self.config.search_query(), "maxResults": limit},
        )
        messages = data.get("messages") or []
        ids = [m["id"] for m in messages if m.get("id")][:limit]
        logger.info(f"[GMAIL] Found {len(ids)} unread candidate message(s) (limit: {limit})")
        return ids

    async def get_message(self, message_id: str) -> MailboxMessage:
        """Fetch and decode one message.

        Raises:
            MailboxError: If the message cannot be fetched
        """
        data = await self._request(
            "GET", f"/messages/{message_id}", params={"format": "full"}
        )
        return MailboxMessage(
            id=data.get("id", message_id),
            sender=gmail_header(data, "From"),
            subject=gmail_header(data, "Subject"),
            body=gmail_message_body(data),
        )

    async def mark_as_read(self, message_id: str) -> None:
        """Remove the UNREAD label from a message."""
        await self._request(
            "POST",
            f"/messages/{message_id}/modify",
            json={"removeLabelIds": ["UNREAD"]},
        )
