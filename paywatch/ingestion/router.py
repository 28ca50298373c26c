"""FastAPI router for email ingestion (webhook push and mailbox poll)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError

from paywatch.core.dependencies import (
    get_email_config,
    get_ingestion_pipeline,
    get_metrics,
    require_webhook_secret,
)
from paywatch.emails.config import EmailConfig
from paywatch.emails.gmail_client import GmailClient, MailboxError
from paywatch.emails.models import InboundEmail
from paywatch.ingestion.errors import (
    ConfigurationError,
    PersistenceError,
    UnknownCompanyError,
)
from paywatch.ingestion.metrics import IngestionMetrics
from paywatch.ingestion.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["ingestion"])


class PollRequest(BaseModel):
    """Body of a poll trigger."""

    company_id: Optional[str] = Field(default=None, description="Company to poll for")
    access_token: Optional[str] = Field(
        default=None,
        description="Gmail OAuth token; without it only stored 'new' rows are processed",
    )


class MetricsResponse(BaseModel):
    """Response for metrics endpoint."""

    aggregate: dict[str, Any]
    recent_runs: list[dict[str, Any]]


def _error(status_code: int, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=message)


@router.post("/email", dependencies=[Depends(require_webhook_secret)])
async def ingest_email(
    payload: dict[str, Any] = Body(...),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
):
    """Ingest one bank alert email pushed by the mail provider.

    Returns one of:
        {success, amount, sender}, {processed: false, reason},
        {skipped: true, reason[, from]}
    """
    if not payload.get("company_id"):
        raise _error(status.HTTP_400_BAD_REQUEST, "company_id is required")

    try:
        email = InboundEmail.model_validate(payload)
    except ValidationError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, f"Invalid email payload: {e}") from e

    try:
        outcome = await pipeline.ingest_email(email)
    except UnknownCompanyError as e:
        raise _error(status.HTTP_404_NOT_FOUND, str(e)) from e
    except ConfigurationError as e:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e)) from e
    except PersistenceError as e:
        logger.error(f"[INGEST] {e}")
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e)) from e

    return outcome.to_response()


@router.post("/poll", dependencies=[Depends(require_webhook_secret)])
async def poll_mailbox(
    request: Request,
    body: PollRequest,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
    config: EmailConfig = Depends(get_email_config),
):
    """Poll the company's Gmail inbox, or reprocess stored rows without a token.

    Returns:
        {success, processed, succeeded, failed, skipped}
    """
    if not body.company_id:
        raise _error(status.HTTP_400_BAD_REQUEST, "company_id is required")

    try:
        if body.access_token:
            async with GmailClient(
                body.access_token,
                config.mailbox,
                transport=getattr(request.app.state, "gmail_transport", None),
            ) as mailbox:
                result = await pipeline.sync_mailbox(body.company_id, mailbox)
        else:
            result = await pipeline.reprocess_new_transactions(body.company_id)
    except UnknownCompanyError as e:
        raise _error(status.HTTP_404_NOT_FOUND, str(e)) from e
    except (ConfigurationError, MailboxError) as e:
        logger.error(f"[INGEST] Poll failed for company {body.company_id}: {e}")
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e)) from e

    return result.to_response()


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    dependencies=[Depends(require_webhook_secret)],
)
async def get_ingestion_metrics(
    count: int = 10, metrics: IngestionMetrics = Depends(get_metrics)
):
    """Aggregate metrics and the most recent ingestion runs."""
    return MetricsResponse(
        aggregate=metrics.get_aggregate_metrics(),
        recent_runs=[run.to_dict() for run in metrics.get_recent_runs(count)],
    )
