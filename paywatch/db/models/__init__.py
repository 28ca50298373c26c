"""Database models for PayWatch."""

from .company import Company
from .transaction import Transaction

__all__ = ["Company", "Transaction"]
