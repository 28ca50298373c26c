"""Transaction status lifecycle.

new -> completed | failed              (direct insert / phase B without claim)
new -> processing -> completed | failed (two-phase mailbox ingestion)

completed and failed are terminal.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from paywatch.ingestion.errors import InvalidStatusTransition


class TransactionStatus(str, Enum):
    """Status of a stored transaction."""

    NEW = "new"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.NEW: frozenset(
        {
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
        }
    ),
    TransactionStatus.PROCESSING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """Return True if ``current -> target`` is a legal forward move."""
    return target in ALLOWED_TRANSITIONS[TransactionStatus(current)]


def check_transition(
    current: TransactionStatus,
    target: TransactionStatus,
    amount: Decimal | float | int | None = None,
) -> None:
    """Validate a status change.

    Args:
        current: Status the row has now
        target: Status the caller wants to write
        amount: Amount the row will hold after the change; required to be
            positive when the target is ``completed``

    Raises:
        InvalidStatusTransition: If the move is not allowed
    """
    current = TransactionStatus(current)
    target = TransactionStatus(target)

    if not can_transition(current, target):
        raise InvalidStatusTransition(
            f"Cannot move transaction from '{current.value}' to '{target.value}'"
        )

    if target is TransactionStatus.COMPLETED and (amount is None or amount <= 0):
        raise InvalidStatusTransition(
            f"Completed transactions need a positive amount, got {amount!r}"
        )
