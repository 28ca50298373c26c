"""Company (tenant) model."""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paywatch.db.base import Base

if TYPE_CHECKING:
    from paywatch.db.models.transaction import Transaction


class Company(Base):
    """
    A business receiving payments.

    Created and mutated by its owner through the dashboard; the ingestion
    pipeline only reads it to confirm the target of a write.
    """

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    company_code: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True,
        comment="Public code staff use to sign in to the kiosk",
    )
    staff_pin: Mapped[str] = mapped_column(String(32), nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(36), nullable=False, index=True,
        comment="Account id of the owning boss (managed by the auth provider)",
    )
    system_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
        comment="Staff access is refused while false",
    )
    gmail_connected: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    connected_banks: Mapped[List[str]] = mapped_column(
        JSON, nullable=False, default=list,
        comment="Bank identifiers the owner has connected",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    transactions: Mapped[List["Transaction"]] = relationship(
        back_populates="company",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, code={self.company_code}, active={self.system_active})>"
