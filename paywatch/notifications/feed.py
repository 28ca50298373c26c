"""In-process change feed for transaction inserts and updates.

Viewers subscribe per company; the pipeline publishes after each commit.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Literal

import structlog

logger = structlog.get_logger(__name__)

EventType = Literal["INSERT", "UPDATE"]


@dataclass
class TransactionEvent:
    """A committed change to one transaction row."""

    type: EventType
    company_id: str
    transaction: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "company_id": self.company_id,
            "transaction": self.transaction,
            "published_at": self.published_at.isoformat(),
        }


class Subscription:
    """One viewer's queue of events for a single company."""

    def __init__(self, company_id: str, max_queue: int):
        self.company_id = company_id
        self.queue: asyncio.Queue[TransactionEvent] = asyncio.Queue(maxsize=max_queue)
        self.dropped = 0

    def offer(self, event: TransactionEvent) -> None:
        """Enqueue without blocking; the oldest event goes when full."""
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def events(self) -> AsyncIterator[TransactionEvent]:
        while True:
            yield await self.queue.get()


class TransactionFeed:
    """Fan-out of transaction events to subscribers filtered by company."""

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._subscribers: dict[str, set[Subscription]] = {}

    @asynccontextmanager
    async def subscribe(self, company_id: str) -> AsyncIterator[Subscription]:
        """Register a subscriber for the lifetime of the context."""
        subscription = Subscription(company_id, self.max_queue)
        self._subscribers.setdefault(company_id, set()).add(subscription)
        logger.debug("feed.subscribed", company_id=company_id)
        try:
            yield subscription
        finally:
            subscribers = self._subscribers.get(company_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[company_id]
            logger.debug(
                "feed.unsubscribed", company_id=company_id, dropped=subscription.dropped
            )

    def subscriber_count(self, company_id: str) -> int:
        return len(self._subscribers.get(company_id, ()))

    def publish(self, event: TransactionEvent) -> int:
        """Deliver an event to the company's subscribers.

        Returns:
            Number of subscribers the event was offered to
        """
        subscribers = list(self._subscribers.get(event.company_id, ()))
        for subscription in subscribers:
            subscription.offer(event)
        logger.debug(
            "feed.published",
            type=event.type,
            company_id=event.company_id,
            transaction_id=event.transaction.get("id"),
            subscribers=len(subscribers),
        )
        return len(subscribers)
