"""Email-to-transaction ingestion pipeline.

This module handles:
- Sender verification and deduplication
- Direct (webhook) ingestion
- Two-phase mailbox ingestion (claim, then extract)
- Run metrics
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paywatch.ingestion.pipeline import IngestionPipeline
    from paywatch.ingestion.status import TransactionStatus

__all__ = ["IngestionPipeline", "TransactionStatus"]
