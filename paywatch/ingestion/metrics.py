"""Metrics tracking for ingestion runs (webhook calls and mailbox polls)."""

from __future__ import annotations

import logging
from collections import deque
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Literal

logger = logging.getLogger(__name__)

RunStatus = Literal["SUCCESS", "PARTIAL", "FAILED"]


@dataclass
class IngestRunMetrics:
    """Metrics for a single ingestion run."""

    run_id: str
    mode: str
    company_id: str
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    status: RunStatus

    messages_seen: int
    messages_rejected: int
    duplicates: int
    rows_claimed: int
    extracted: int
    not_extracted: int
    completed: int
    failed: int

    error_message: str | None = None
    errors: list[str] | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat()
        return data


class IngestionMetrics:
    """In-memory history of ingestion runs.

    The open run lives in a context variable, so each request task records
    into its own run even when several requests overlap.
    """

    def __init__(self, max_history: int = 100):
        """Initialize metrics tracker.

        Args:
            max_history: Maximum number of runs to keep in history
        """
        self.max_history = max_history
        self.runs: deque[IngestRunMetrics] = deque(maxlen=max_history)
        self._current_run: ContextVar[dict | None] = ContextVar(
            f"ingest_run_{id(self)}", default=None
        )

    def start_run(self, run_id: str, mode: str, company_id: str) -> None:
        self._current_run.set({
            "run_id": run_id,
            "mode": mode,
            "company_id": company_id,
            "started_at": datetime.now(timezone.utc),
            "messages_seen": 0,
            "messages_rejected": 0,
            "duplicates": 0,
            "rows_claimed": 0,
            "extracted": 0,
            "not_extracted": 0,
            "completed": 0,
            "failed": 0,
            "errors": [],
        })
        logger.debug(f"Started metrics tracking for run: {run_id} ({mode})")

    def _bump(self, key: str, count: int = 1) -> None:
        run = self._current_run.get()
        if run:
            run[key] += count

    def record_seen(self, count: int = 1) -> None:
        self._bump("messages_seen", count)

    def record_rejected(self) -> None:
        """Record a message dropped by sender verification."""
        self._bump("messages_rejected")

    def record_duplicate(self) -> None:
        self._bump("duplicates")

    def record_claimed(self) -> None:
        """Record a placeholder row written by phase A."""
        self._bump("rows_claimed")

    def record_extraction(self, found: bool) -> None:
        self._bump("extracted" if found else "not_extracted")

    def record_completed(self) -> None:
        self._bump("completed")

    def record_failed(self, error: str) -> None:
        """Record a per-item failure.

        Args:
            error: Error message
        """
        run = self._current_run.get()
        if run:
            run["failed"] += 1
            run["errors"].append(error)

    def end_run(self, status: RunStatus, error_message: str | None = None) -> None:
        """End current run and save metrics."""
        run = self._current_run.get()
        if not run:
            return

        ended_at = datetime.now(timezone.utc)
        duration = (ended_at - run["started_at"]).total_seconds()

        metrics = IngestRunMetrics(
            run_id=run["run_id"],
            mode=run["mode"],
            company_id=run["company_id"],
            started_at=run["started_at"],
            ended_at=ended_at,
            duration_seconds=duration,
            status=status,
            messages_seen=run["messages_seen"],
            messages_rejected=run["messages_rejected"],
            duplicates=run["duplicates"],
            rows_claimed=run["rows_claimed"],
            extracted=run["extracted"],
            not_extracted=run["not_extracted"],
            completed=run["completed"],
            failed=run["failed"],
            error_message=error_message,
            errors=run["errors"] or None,
        )
        self.runs.append(metrics)

        logger.info(
            f"Run {metrics.run_id} completed: "
            f"mode={metrics.mode}, "
            f"status={status}, "
            f"seen={metrics.messages_seen}, "
            f"completed={metrics.completed}, "
            f"failed={metrics.failed}, "
            f"duration={duration:.2f}s"
        )
        self._current_run.set(None)

    def get_aggregate_metrics(self) -> dict:
        """Get aggregate metrics across all runs."""
        if not self.runs:
            return {
                "total_runs": 0,
                "successful_runs": 0,
                "failed_runs": 0,
                "success_rate": 0.0,
            }

        total_runs = len(self.runs)
        successful_runs = sum(1 for r in self.runs if r.status == "SUCCESS")
        partial_runs = sum(1 for r in self.runs if r.status == "PARTIAL")
        failed_runs = sum(1 for r in self.runs if r.status == "FAILED")

        total_extracted = sum(r.extracted for r in self.runs)
        total_attempted = total_extracted + sum(r.not_extracted for r in self.runs)

        return {
            "total_runs": total_runs,
            "successful_runs": successful_runs,
            "partial_runs": partial_runs,
            "failed_runs": failed_runs,
            "success_rate": successful_runs / total_runs * 100,
            "total_messages_seen": sum(r.messages_seen for r in self.runs),
            "total_rejected": sum(r.messages_rejected for r in self.runs),
            "total_duplicates": sum(r.duplicates for r in self.runs),
            "total_completed": sum(r.completed for r in self.runs),
            "total_failed": sum(r.failed for r in self.runs),
            "extraction_rate": total_extracted / total_attempted if total_attempted else 0.0,
            "average_duration_seconds": sum(r.duration_seconds for r in self.runs) / total_runs,
        }

    def get_last_run(self) -> IngestRunMetrics | None:
        return self.runs[-1] if self.runs else None

    def get_recent_runs(self, count: int = 10) -> list[IngestRunMetrics]:
        return list(self.runs)[-count:] if self.runs else []
