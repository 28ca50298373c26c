"""Ingestion pipeline: bank alert emails in, transactions out.

Two entry points share one set of collaborators:

- ``ingest_email``: an email pushed to the webhook is verified, deduplicated,
  extracted and stored as a completed transaction in one pass.
- ``sync_mailbox``: unread Gmail alerts are claimed as placeholder rows
  (phase A), then each claimed row is extracted and finalized (phase B).

Every database step runs in its own unit of work, so a failure on one item
never rolls back another.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Literal, Optional, Protocol

from pydantic import BaseModel, Field
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paywatch.db.unit_of_work import UnitOfWork
from paywatch.emails.config import PipelineConfig
from paywatch.emails.gmail_client import MailboxAuthError, MailboxError
from paywatch.emails.models import MAX_AMOUNT
from paywatch.ingestion.dedup import DeduplicationGate
from paywatch.ingestion.errors import (
    ConfigurationError,
    PersistenceError,
    UnknownCompanyError,
)
from paywatch.ingestion.status import TransactionStatus, check_transition
from paywatch.notifications.feed import TransactionEvent

if TYPE_CHECKING:
    from paywatch.db.models import Transaction
    from paywatch.emails.filter import SenderVerifier
    from paywatch.emails.llm_client import ExtractionClient
    from paywatch.emails.models import InboundEmail, MailboxMessage
    from paywatch.ingestion.metrics import IngestionMetrics
    from paywatch.notifications.feed import TransactionFeed

logger = logging.getLogger(__name__)


class Mailbox(Protocol):
    """What phase A needs from a mailbox (``GmailClient`` in production)."""

    async def list_unread_ids(self, limit: int | None = None) -> list[str]: ...

    async def get_message(self, message_id: str) -> MailboxMessage: ...

    async def mark_as_read(self, message_id: str) -> None: ...


class IngestOutcome(BaseModel):
    """Result of ingesting one webhook email."""

    status: Literal["completed", "no_payment", "skipped"]
    reason: str | None = None
    transaction_id: str | None = None
    amount: Decimal | None = None
    sender_name: str | None = None
    sender_header: str | None = None

    def to_response(self) -> dict:
        """Body returned by the webhook endpoint."""
        if self.status == "completed":
            return {
                "success": True,
                "amount": float(self.amount) if self.amount is not None else None,
                "sender": self.sender_name,
            }
        if self.status == "no_payment":
            return {"processed": False, "reason": self.reason}
        body = {"skipped": True, "reason": self.reason}
        if self.sender_header is not None:
            body["from"] = self.sender_header
        return body


class ClaimResult(BaseModel):
    """Result of phase A (claiming unread mailbox messages)."""

    fetched: int = 0
    claimed_ids: list[str] = Field(default_factory=list)
    skipped: int = 0
    failed: int = 0


class BatchResult(BaseModel):
    """Counts for a batch of transactions."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_response(self) -> dict:
        return {"success": True, **self.model_dump()}


class IngestionPipeline:
    """Turns bank alert emails into transactions for one company at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        verifier: SenderVerifier,
        extractor: Optional[ExtractionClient] = None,
        feed: Optional[TransactionFeed] = None,
        metrics: Optional[IngestionMetrics] = None,
        config: Optional[PipelineConfig] = None,
    ):
        """Initialize the pipeline.

        Args:
            session_factory: Factory for database sessions
            verifier: Sender allow-list check
            extractor: Model-backed payment extraction; only ingestion needs it
            feed: Change feed notified after each commit
            metrics: Run history tracker
            config: Pipeline thresholds
        """
        self.session_factory = session_factory
        self.verifier = verifier
        self.extractor = extractor
        self.feed = feed
        self.metrics = metrics
        self.config = config or PipelineConfig()
        self.dedup = DeduplicationGate()

    def _require_extractor(self) -> ExtractionClient:
        if self.extractor is None:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        return self.extractor

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory)

    def _publish(self, event_type: str, transaction: Transaction) -> None:
        if self.feed is not None:
            self.feed.publish(
                TransactionEvent(
                    type=event_type,  # type: ignore[arg-type]
                    company_id=transaction.company_id,
                    transaction=transaction.to_dict(),
                )
            )

    def _start_run(self, mode: str, company_id: str) -> None:
        if self.metrics is not None:
            self.metrics.start_run(f"{mode}-{uuid.uuid4().hex[:8]}", mode, company_id)

    async def require_company(self, company_id: str) -> None:
        """Raise UnknownCompanyError unless the company exists."""
        async with self._uow() as uow:
            if not await uow.companies.exists(id=company_id):
                raise UnknownCompanyError(f"Company {company_id} not found")

    async def _insert(self, **values) -> Transaction:
        """Insert and commit one transaction row.

        Raises:
            PersistenceError: If the store rejects the row (including a
                second row for the same ``message_id``)
        """
        try:
            async with self._uow() as uow:
                transaction = await uow.transactions.create(**values)
                await uow.commit()
        except (IntegrityError, DataError) as e:
            raise PersistenceError(f"Transaction insert failed: {e.orig}") from e
        return transaction

    # ------------------------------------------------------------------
    # Direct mode
    # ------------------------------------------------------------------

    async def ingest_email(self, email: InboundEmail) -> IngestOutcome:
        """Ingest one email pushed to the webhook.

        Raises:
            ConfigurationError: If no extraction client is configured
            UnknownCompanyError: If ``email.company_id`` does not exist
            PersistenceError: If the insert is rejected
        """
        self._require_extractor()
        await self.require_company(email.company_id)
        self._start_run("webhook", email.company_id)
        m = self.metrics
        if m:
            m.record_seen()

        try:
            outcome = await self._ingest_email(email)
        except Exception as e:
            if m:
                m.record_failed(str(e))
                m.end_run("FAILED", error_message=str(e))
            raise

        if m:
            m.end_run("SUCCESS")
        return outcome

    async def _ingest_email(self, email: InboundEmail) -> IngestOutcome:
        m = self.metrics

        verification = self.verifier.verify(email.sender)
        if not verification.passed:
            logger.info(
                f"[PIPELINE] Rejected sender {email.sender!r}: {verification.reason}"
            )
            if m:
                m.record_rejected()
            return IngestOutcome(
                status="skipped",
                reason="sender_domain_not_allowed",
                sender_header=email.sender,
            )

        async with self._uow() as uow:
            duplicate = await self.dedup.is_duplicate(uow, email.message_id)
        if duplicate:
            if m:
                m.record_duplicate()
            return IngestOutcome(status="skipped", reason="duplicate")

        extracted = await self._require_extractor().extract_payment(
            email.subject, email.sender, email.body_text()
        )
        if m:
            m.record_extraction(extracted is not None)
        if extracted is None:
            logger.info(f"[PIPELINE] No payment data in email from {email.sender!r}")
            return IngestOutcome(status="no_payment", reason="no_payment_data_found")

        check_transition(TransactionStatus.NEW, TransactionStatus.COMPLETED, extracted.amount)
        transaction = await self._insert(
            company_id=email.company_id,
            amount=extracted.amount,
            sender_name=extracted.sender_name,
            bank_source=extracted.bank_source,
            status=TransactionStatus.COMPLETED,
            message_id=email.message_id,
            source="webhook",
        )
        if m:
            m.record_completed()
        self._publish("INSERT", transaction)

        logger.info(
            f"[PIPELINE] ✓ Stored transaction {transaction.id}: "
            f"{extracted.amount} from {extracted.sender_name} ({extracted.bank_source})"
        )
        return IngestOutcome(
            status="completed",
            transaction_id=transaction.id,
            amount=extracted.amount,
            sender_name=extracted.sender_name,
        )

    # ------------------------------------------------------------------
    # Poll mode
    # ------------------------------------------------------------------

    async def claim_mailbox_messages(self, company_id: str, mailbox: Mailbox) -> ClaimResult:
        """Phase A: write a placeholder row per unread bank alert.

        A message is marked read only after its row is committed. Messages
        from non-bank senders are left unread; duplicates are marked read.

        Raises:
            MailboxError: If the unread search fails or the token is rejected
        """
        result = ClaimResult()
        m = self.metrics

        message_ids = await mailbox.list_unread_ids()
        result.fetched = len(message_ids)
        if m:
            m.record_seen(len(message_ids))

        for message_id in message_ids:
            try:
                claimed_id = await self._claim_message(company_id, mailbox, message_id)
            except MailboxAuthError:
                raise
            except Exception as e:
                logger.error(
                    f"[PIPELINE] Failed to claim message {message_id}: {e}", exc_info=True
                )
                result.failed += 1
                if m:
                    m.record_failed(f"{message_id}: {e}")
                continue

            if claimed_id is None:
                result.skipped += 1
            else:
                result.claimed_ids.append(claimed_id)

        logger.info(
            f"[PIPELINE] Claimed {len(result.claimed_ids)}/{result.fetched} message(s) "
            f"for company {company_id} (skipped={result.skipped}, failed={result.failed})"
        )
        return result

    async def _claim_message(
        self, company_id: str, mailbox: Mailbox, message_id: str
    ) -> Optional[str]:
        """Claim one message. Returns the new row id, or None when skipped."""
        m = self.metrics
        message = await mailbox.get_message(message_id)

        verification = self.verifier.verify(message.sender)
        if not verification.passed:
            logger.info(
                f"[PIPELINE] Leaving message {message_id} unread: {verification.reason}"
            )
            if m:
                m.record_rejected()
            return None

        async with self._uow() as uow:
            duplicate = await self.dedup.is_duplicate(uow, message.id)
        if duplicate:
            if m:
                m.record_duplicate()
            await mailbox.mark_as_read(message_id)
            return None

        transaction = await self._insert(
            company_id=company_id,
            amount=Decimal("0"),
            sender_name="",
            status=TransactionStatus.NEW,
            message_id=message.id,
            source="gmail",
            raw_content=message.body,
        )
        if m:
            m.record_claimed()
        self._publish("INSERT", transaction)

        try:
            await mailbox.mark_as_read(message_id)
        except MailboxAuthError:
            raise
        except MailboxError as e:
            # Row is committed; dedup keeps the next poll from re-inserting it.
            logger.warning(f"[PIPELINE] Could not mark {message_id} as read: {e}")

        return transaction.id

    async def process_new_transactions(
        self, company_id: str, transaction_ids: Optional[list[str]] = None
    ) -> BatchResult:
        """Phase B: extract payment data for rows still in ``new``.

        Args:
            company_id: Owning company
            transaction_ids: Only these rows (those just claimed by a poll);
                None means every ``new`` row of the company

        Returns:
            Counts; rows already completed or failed are never picked up
        """
        async with self._uow() as uow:
            stale = await uow.transactions.fail_stale_processing(
                company_id, self.config.stale_processing_minutes
            )
            pending = await uow.transactions.get_new_for_company(company_id, transaction_ids)
            pending_ids = [t.id for t in pending]

        if stale:
            logger.warning(
                f"[PIPELINE] Failed {stale} transaction(s) stuck in processing "
                f"for company {company_id}"
            )

        result = BatchResult(processed=len(pending_ids))
        for transaction_id in pending_ids:
            try:
                status = await self._process_transaction(transaction_id)
            except Exception as e:
                logger.error(
                    f"[PIPELINE] Failed to process transaction {transaction_id}: {e}",
                    exc_info=True,
                )
                result.failed += 1
                if self.metrics:
                    self.metrics.record_failed(f"{transaction_id}: {e}")
                await self._mark_failed(transaction_id)
                continue

            if status is None:
                result.skipped += 1
            elif status == TransactionStatus.COMPLETED:
                result.succeeded += 1
            else:
                result.failed += 1

        logger.info(
            f"[PIPELINE] Processed {result.processed} transaction(s) for company "
            f"{company_id}: succeeded={result.succeeded}, failed={result.failed}, "
            f"skipped={result.skipped}"
        )
        return result

    async def _process_transaction(self, transaction_id: str) -> Optional[TransactionStatus]:
        """Claim, extract and finalize one row.

        Returns:
            Final status, or None when another worker claimed the row first
        """
        async with self._uow() as uow:
            if not await uow.transactions.claim_for_processing(transaction_id):
                logger.info(f"[PIPELINE] Transaction {transaction_id} already claimed")
                return None
            transaction = await uow.transactions.get_by_id(transaction_id)
            raw_content = (transaction.raw_content or "") if transaction else ""

        if len(raw_content.strip()) < self.config.min_raw_content_length:
            logger.info(f"[PIPELINE] Transaction {transaction_id} has no usable content")
            return await self._finalize(transaction_id, TransactionStatus.FAILED)

        extracted = await self._require_extractor().extract_payment("", "", raw_content)
        if self.metrics:
            self.metrics.record_extraction(extracted is not None)
        if extracted is None:
            return await self._finalize(transaction_id, TransactionStatus.FAILED)

        return await self._finalize(
            transaction_id,
            TransactionStatus.COMPLETED,
            amount=extracted.amount,
            sender_name=extracted.sender_name,
            bank_source=extracted.bank_source,
        )

    async def _finalize(
        self, transaction_id: str, target: TransactionStatus, **fields
    ) -> TransactionStatus:
        try:
            async with self._uow() as uow:
                transaction = await uow.transactions.get_by_id(transaction_id)
                if transaction is None:
                    raise PersistenceError(f"Transaction {transaction_id} disappeared")
                transaction = await uow.transactions.transition(transaction, target, **fields)
                await uow.commit()
        except (IntegrityError, DataError) as e:
            raise PersistenceError(f"Transaction update failed: {e.orig}") from e

        if self.metrics:
            if target == TransactionStatus.COMPLETED:
                self.metrics.record_completed()
            else:
                self.metrics.record_failed(f"{transaction_id}: extraction failed")
        self._publish("UPDATE", transaction)
        return target

    async def _mark_failed(self, transaction_id: str) -> None:
        """Move a row whose processing crashed to ``failed``, if still possible."""
        try:
            async with self._uow() as uow:
                transaction = await uow.transactions.get_by_id(transaction_id)
                if transaction is None or transaction.status == TransactionStatus.FAILED:
                    return
                transaction = await uow.transactions.transition(
                    transaction, TransactionStatus.FAILED
                )
                await uow.commit()
        except Exception as e:
            # Left in processing; the stale sweep of a later batch fails it.
            logger.error(
                f"[PIPELINE] Could not mark transaction {transaction_id} failed: {e}"
            )
            return

        self._publish("UPDATE", transaction)

    async def sync_mailbox(self, company_id: str, mailbox: Mailbox) -> BatchResult:
        """Poll the mailbox and finalize what was claimed.

        ``processed`` counts messages fetched from the mailbox.

        Raises:
            UnknownCompanyError: If the company does not exist
            MailboxError: If the mailbox cannot be searched; rows already
                written stay committed
        """
        self._require_extractor()
        await self.require_company(company_id)
        self._start_run("poll", company_id)
        m = self.metrics

        try:
            claim = await self.claim_mailbox_messages(company_id, mailbox)
            batch = await self.process_new_transactions(company_id, claim.claimed_ids)
        except Exception as e:
            if m:
                m.end_run("FAILED", error_message=str(e))
            raise

        result = BatchResult(
            processed=claim.fetched,
            succeeded=batch.succeeded,
            failed=claim.failed + batch.failed,
            skipped=claim.skipped + batch.skipped,
        )
        if m:
            m.end_run("PARTIAL" if result.failed else "SUCCESS")
        return result

    async def reprocess_new_transactions(self, company_id: str) -> BatchResult:
        """Run phase B over every stored ``new`` row, without a mailbox.

        Raises:
            UnknownCompanyError: If the company does not exist
        """
        self._require_extractor()
        await self.require_company(company_id)
        self._start_run("reprocess", company_id)
        m = self.metrics

        try:
            result = await self.process_new_transactions(company_id)
        except Exception as e:
            if m:
                m.end_run("FAILED", error_message=str(e))
            raise

        if m:
            m.record_seen(result.processed)
            m.end_run("PARTIAL" if result.failed else "SUCCESS")
        return result

    # ------------------------------------------------------------------
    # Viewer writes
    # ------------------------------------------------------------------

    async def record_manual_transaction(
        self,
        company_id: str,
        amount: Decimal,
        sender_name: str,
        bank_source: str = "Unknown",
    ) -> Transaction:
        """Record a payment typed in from the dashboard.

        Raises:
            UnknownCompanyError: If the company does not exist
            InvalidStatusTransition: If the amount is not positive
            ValueError: If the sender name is blank or the amount too large
        """
        sender_name = (sender_name or "").strip()
        if not sender_name:
            raise ValueError("sender_name must not be empty")
        try:
            amount = Decimal(str(amount)).quantize(Decimal("0.01"))
        except InvalidOperation as e:
            raise ValueError("amount is out of range") from e
        if amount >= MAX_AMOUNT:
            raise ValueError("amount is out of range")
        check_transition(TransactionStatus.NEW, TransactionStatus.COMPLETED, amount)

        await self.require_company(company_id)
        transaction = await self._insert(
            company_id=company_id,
            amount=amount,
            sender_name=sender_name,
            bank_source=(bank_source or "").strip() or "Unknown",
            status=TransactionStatus.COMPLETED,
            source="manual",
        )
        self._publish("INSERT", transaction)
        logger.info(f"[PIPELINE] Recorded manual transaction {transaction.id}: {amount}")
        return transaction

    async def update_item_description(
        self, transaction_id: str, description: Optional[str]
    ) -> Optional[Transaction]:
        """Set what a payment was for. Returns None if the row does not exist."""
        async with self._uow() as uow:
            transaction = await uow.transactions.update(
                transaction_id, item_description=(description or "").strip() or None
            )
            if transaction is None:
                return None
            await uow.commit()

        self._publish("UPDATE", transaction)
        return transaction
