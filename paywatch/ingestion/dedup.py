"""Deduplication of source emails by message id."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paywatch.db.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class DeduplicationGate:
    """At-most-once check on a source email id.

    This is a read-before-write shortcut; the unique constraint on
    ``transactions.message_id`` is what actually guarantees one row per id
    when two deliveries race.
    """

    async def is_duplicate(self, uow: UnitOfWork, message_id: str | None) -> bool:
        """Return True if a transaction already exists for ``message_id``.

        Emails without an id always proceed.
        """
        if not message_id or not message_id.strip():
            return False

        existing = await uow.transactions.get_by_message_id(message_id.strip())
        if existing is not None:
            logger.info(
                f"[DEDUP] Message {message_id} already recorded as transaction {existing.id}"
            )
            return True
        return False
