"""FastAPI dependencies shared by the routers.

Long-lived objects (database, change feed, metrics) are created in the
application lifespan and kept on ``app.state``; per-request collaborators are
built from settings here so tests can swap them via ``dependency_overrides``.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paywatch.core.config import Settings, get_settings
from paywatch.db.models import Company
from paywatch.db.unit_of_work import UnitOfWork
from paywatch.emails.config import EmailConfig
from paywatch.emails.filter import SenderVerifier
from paywatch.emails.llm_client import ExtractionClient
from paywatch.ingestion.errors import ConfigurationError
from paywatch.ingestion.metrics import IngestionMetrics
from paywatch.ingestion.pipeline import IngestionPipeline
from paywatch.notifications.feed import TransactionFeed

logger = logging.getLogger(__name__)


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.database.session_factory


def get_feed(request: Request) -> TransactionFeed:
    return request.app.state.feed


def get_metrics(request: Request) -> IngestionMetrics:
    return request.app.state.metrics


def get_email_config(settings: Settings = Depends(get_settings)) -> EmailConfig:
    return EmailConfig.from_settings(settings)


def require_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Check the shared secret on ingestion and dashboard calls.

    Raises:
        HTTPException: 500 when no secret is configured, 401 on mismatch
    """
    expected = settings.INGEST_WEBHOOK_SECRET
    if not expected:
        logger.error("[AUTH] INGEST_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="INGEST_WEBHOOK_SECRET is not configured",
        )
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("[AUTH] Rejected request with invalid webhook secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_extractor(
    request: Request, config: EmailConfig = Depends(get_email_config)
) -> ExtractionClient:
    """Extraction client for ingestion endpoints.

    Raises:
        HTTPException: 500 when the Gemini key is missing
    """
    try:
        return ExtractionClient(
            config.llm, transport=getattr(request.app.state, "llm_transport", None)
        )
    except ConfigurationError as e:
        logger.error(f"[AUTH] {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e


def _build_pipeline(
    request: Request, config: EmailConfig, extractor: Optional[ExtractionClient]
) -> IngestionPipeline:
    return IngestionPipeline(
        session_factory=get_session_factory(request),
        verifier=SenderVerifier(config.filter),
        extractor=extractor,
        feed=get_feed(request),
        metrics=get_metrics(request),
        config=config.pipeline,
    )


def get_ingestion_pipeline(
    request: Request,
    extractor: ExtractionClient = Depends(get_extractor),
    config: EmailConfig = Depends(get_email_config),
) -> IngestionPipeline:
    return _build_pipeline(request, config, extractor)


def get_dashboard_pipeline(
    request: Request, config: EmailConfig = Depends(get_email_config)
) -> IngestionPipeline:
    """Pipeline for viewer writes, which never call the model."""
    return _build_pipeline(request, config, None)


async def get_staff_company(
    x_company_code: Optional[str] = Header(default=None),
    x_staff_pin: Optional[str] = Header(default=None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Company:
    """Resolve kiosk credentials to an active company.

    Raises:
        HTTPException: 401 when the code, PIN or activation check fails
    """
    if not x_company_code or not x_staff_pin:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    async with UnitOfWork(session_factory) as uow:
        company = await uow.companies.validate_staff_login(x_company_code, x_staff_pin)

    if company is None:
        logger.warning(f"[AUTH] Staff login failed for company code {x_company_code!r}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return company
