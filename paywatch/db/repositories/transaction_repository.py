"""Transaction repository with specialized queries."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select

from paywatch.db.models.transaction import Transaction
from paywatch.db.repository import BaseRepository
from paywatch.ingestion.status import TransactionStatus, check_transition


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for Transaction model with specialized queries."""

    async def get_by_message_id(self, message_id: str) -> Optional[Transaction]:
        """Get a transaction by its source email id."""
        return await self.get_by_field("message_id", message_id)

    async def list_for_company(
        self, company_id: str, limit: Optional[int] = None
    ) -> List[Transaction]:
        """
        List a company's transactions, newest first.

        Args:
            company_id: Owning company
            limit: Maximum number of rows to return

        Returns:
            Transactions ordered by created_at descending
        """
        query = (
            select(self.model)
            .where(self.model.company_id == company_id)
            .order_by(self.model.created_at.desc())
        )
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_recent_for_company(
        self, company_id: str, hours: int = 24
    ) -> List[Transaction]:
        """Get a company's transactions created within the last ``hours``."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        query = (
            select(self.model)
            .where(
                self.model.company_id == company_id,
                self.model.created_at >= cutoff,
            )
            .order_by(self.model.created_at.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_new_for_company(
        self, company_id: str, transaction_ids: Optional[Iterable[str]] = None
    ) -> List[Transaction]:
        """
        Get rows still waiting for extraction.

        Args:
            company_id: Owning company
            transaction_ids: Restrict to these ids (rows claimed by one poll)

        Returns:
            Transactions in status ``new``, oldest first
        """
        query = select(self.model).where(
            self.model.company_id == company_id,
            self.model.status == TransactionStatus.NEW,
        )
        if transaction_ids is not None:
            ids = list(transaction_ids)
            if not ids:
                return []
            query = query.where(self.model.id.in_(ids))

        result = await self.session.execute(query.order_by(self.model.created_at.asc()))
        return list(result.scalars().all())

    async def claim_for_processing(self, transaction_id: str) -> bool:
        """
        Move a row from ``new`` to ``processing`` if nobody else has.

        The conditional update is the claim: only one concurrent caller sees
        a changed row.

        Returns:
            True if this caller now owns the row
        """
        check_transition(TransactionStatus.NEW, TransactionStatus.PROCESSING)
        changed = await self.update_where(
            {"status": TransactionStatus.PROCESSING},
            id=transaction_id,
            status=TransactionStatus.NEW,
        )
        return changed == 1

    async def transition(
        self, transaction: Transaction, target: TransactionStatus, **fields
    ) -> Transaction:
        """
        Change status (and optionally payload fields) of a row.

        Args:
            transaction: Row to change
            target: New status
            **fields: Other columns to write alongside the status

        Returns:
            The updated row

        Raises:
            InvalidStatusTransition: If the move is not forward, or a
                completed row would carry a non-positive amount
        """
        amount = fields.get("amount", transaction.amount)
        check_transition(transaction.status, target, amount=amount)

        for key, value in fields.items():
            setattr(transaction, key, value)
        transaction.status = target

        await self.session.flush()
        await self.session.refresh(transaction)
        return transaction

    async def fail_stale_processing(self, company_id: str, older_than_minutes: int) -> int:
        """
        Mark rows abandoned in ``processing`` as ``failed``.

        Returns:
            Number of rows failed
        """
        check_transition(TransactionStatus.PROCESSING, TransactionStatus.FAILED)
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        return await self.update_where(
            {"status": TransactionStatus.FAILED},
            company_id=company_id,
            status=TransactionStatus.PROCESSING,
            updated_at__lt=cutoff,
        )

    async def count_by_status(self, company_id: str, status: TransactionStatus) -> int:
        """Get count of a company's transactions with specific status."""
        return await self.count(company_id=company_id, status=status)
