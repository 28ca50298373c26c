"""
Transaction API routes for the owner dashboard and the staff kiosk.

Dashboard routes share the ingestion secret; staff routes authenticate with
the company code and staff PIN.
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paywatch.core.dependencies import (
    get_dashboard_pipeline,
    get_feed,
    get_session_factory,
    get_staff_company,
    require_webhook_secret,
)
from paywatch.db.models import Company
from paywatch.db.unit_of_work import UnitOfWork
from paywatch.emails.models import MAX_AMOUNT
from paywatch.ingestion.errors import (
    InvalidStatusTransition,
    PersistenceError,
    UnknownCompanyError,
)
from paywatch.ingestion.pipeline import IngestionPipeline
from paywatch.notifications.feed import Subscription, TransactionFeed

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transactions"])

STREAM_KEEPALIVE_SECONDS = 15.0


class ManualTransactionRequest(BaseModel):
    """Payment typed in from the dashboard."""

    amount: Decimal = Field(..., gt=0, lt=MAX_AMOUNT, description="Amount in Naira")
    sender_name: str = Field(..., min_length=1, description="Payer name")
    bank_source: str = Field(default="Unknown", description="Bank label")


class ItemDescriptionRequest(BaseModel):
    """What a payment was for."""

    item_description: Optional[str] = Field(default=None, max_length=500)


class TransactionListResponse(BaseModel):
    """Transactions, newest first."""

    company_id: str
    count: int
    transactions: List[Dict[str, Any]]


@router.get(
    "/companies/{company_id}/transactions",
    response_model=TransactionListResponse,
    dependencies=[Depends(require_webhook_secret)],
)
async def list_company_transactions(
    company_id: str,
    limit: int = 50,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """List a company's transactions for the owner dashboard."""
    limit = max(1, min(limit, 500))
    async with UnitOfWork(session_factory) as uow:
        if not await uow.companies.exists(id=company_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Company {company_id} not found",
            )
        transactions = await uow.transactions.list_for_company(company_id, limit=limit)

    return TransactionListResponse(
        company_id=company_id,
        count=len(transactions),
        transactions=[t.to_dict() for t in transactions],
    )


@router.post(
    "/companies/{company_id}/transactions",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_webhook_secret)],
)
async def create_manual_transaction(
    company_id: str,
    body: ManualTransactionRequest,
    pipeline: IngestionPipeline = Depends(get_dashboard_pipeline),
):
    """Record a payment that did not arrive by email."""
    try:
        transaction = await pipeline.record_manual_transaction(
            company_id, body.amount, body.sender_name, body.bank_source
        )
    except UnknownCompanyError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (InvalidStatusTransition, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    except PersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e

    return transaction.to_dict()


@router.patch(
    "/transactions/{transaction_id}",
    dependencies=[Depends(require_webhook_secret)],
)
async def update_transaction_description(
    transaction_id: str,
    body: ItemDescriptionRequest,
    pipeline: IngestionPipeline = Depends(get_dashboard_pipeline),
):
    """Attach an item description to a transaction."""
    transaction = await pipeline.update_item_description(
        transaction_id, body.item_description
    )
    if transaction is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction {transaction_id} not found",
        )
    return transaction.to_dict()


@router.get("/staff/transactions", response_model=TransactionListResponse)
async def list_staff_transactions(
    company: Company = Depends(get_staff_company),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Last 24 hours of payments for the kiosk screen."""
    async with UnitOfWork(session_factory) as uow:
        transactions = await uow.transactions.get_recent_for_company(company.id, hours=24)

    return TransactionListResponse(
        company_id=company.id,
        count=len(transactions),
        transactions=[t.to_dict() for t in transactions],
    )


async def sse_events(
    request: Request,
    subscription: Subscription,
    keepalive: float = STREAM_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Render feed events as server-sent events until the client disconnects."""
    while not await request.is_disconnected():
        try:
            event = await asyncio.wait_for(subscription.queue.get(), timeout=keepalive)
        except asyncio.TimeoutError:
            yield ": keepalive\n\n"
            continue
        yield f"event: {event.type}\ndata: {json.dumps(event.to_dict())}\n\n"


@router.get("/staff/transactions/stream")
async def stream_staff_transactions(
    request: Request,
    company: Company = Depends(get_staff_company),
    feed: TransactionFeed = Depends(get_feed),
):
    """Live inserts and updates for the authenticated kiosk."""
    company_id = company.id

    async def stream() -> AsyncIterator[str]:
        async with feed.subscribe(company_id) as subscription:
            logger.info(f"[STREAM] Kiosk connected for company {company_id}")
            async for chunk in sse_events(request, subscription):
                yield chunk
        logger.info(f"[STREAM] Kiosk disconnected for company {company_id}")

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
