"""Transaction model for payments extracted from bank alert emails."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paywatch.db.base import Base
from paywatch.ingestion.status import TransactionStatus

if TYPE_CHECKING:
    from paywatch.db.models.company import Company


class Transaction(Base):
    """
    A single inbound payment event.

    Rows are written by the ingestion pipeline (webhook or mailbox) or by a
    manual dashboard entry, and are read by the boss dashboard and the staff
    kiosk. ``message_id`` is the idempotency key of the source email.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Payment details
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0"),
        comment="Amount in Naira; 0 while the row is a placeholder",
    )
    sender_name: Mapped[str] = mapped_column(
        Text, nullable=False, default="", comment="Payer display name as extracted"
    )
    bank_source: Mapped[str] = mapped_column(
        Text, nullable=False, default="Unknown", comment="Bank label as extracted"
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(
            TransactionStatus,
            name="transaction_status",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=TransactionStatus.NEW,
        index=True,
    )

    # Ingestion metadata
    message_id: Mapped[Optional[str]] = mapped_column(
        String(512),
        unique=True,
        nullable=True,
        comment="Source email id; unique when present",
    )
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default="webhook",
        comment="webhook, gmail or manual",
    )
    raw_content: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="Raw email text awaiting extraction"
    )

    item_description: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="What the payment was for, added by a viewer"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    company: Mapped["Company"] = relationship(back_populates="transactions")

    __table_args__ = (
        Index("idx_transaction_company_created", "company_id", "created_at"),
        Index("idx_transaction_company_status", "company_id", "status"),
    )

    def to_dict(self) -> dict:
        """Serialize for API responses and change-feed events."""
        return {
            "id": self.id,
            "company_id": self.company_id,
            "amount": float(self.amount) if self.amount is not None else 0.0,
            "sender_name": self.sender_name,
            "bank_source": self.bank_source,
            "status": TransactionStatus(self.status).value,
            "message_id": self.message_id,
            "source": self.source,
            "item_description": self.item_description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, company_id={self.company_id}, "
            f"amount={self.amount}, status={self.status})>"
        )
