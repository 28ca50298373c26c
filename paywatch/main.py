from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from paywatch import __version__
from paywatch.core.config import Settings, get_settings
from paywatch.core.logging import configure_logging, request_id_middleware
from paywatch.db.base import Database
from paywatch.db.init import sanitize_db_url
from paywatch.ingestion.metrics import IngestionMetrics
from paywatch.ingestion.router import router as ingestion_router
from paywatch.notifications.feed import TransactionFeed
from paywatch.transactions.router import router as transactions_router

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application.

    Tests pass their own settings (usually a temporary SQLite file) and may
    set ``app.state.llm_transport`` / ``app.state.gmail_transport`` to route
    outbound calls through an ``httpx.MockTransport``.
    """
    settings = settings or get_settings()
    configure_logging(settings.ENV)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan events."""
        # Startup
        logger.info("=" * 70)
        logger.info("🚀 Starting PayWatch ingest service...")
        logger.info(f"Environment: {settings.ENV}")
        logger.info(f"Database: {sanitize_db_url(settings.database_url)}")
        logger.info("=" * 70)

        database = Database(settings.database_url, echo=False)
        await database.create_all()
        app.state.database = database
        app.state.feed = TransactionFeed(max_queue=settings.FEED_MAX_QUEUE)
        app.state.metrics = IngestionMetrics()

        if not settings.INGEST_WEBHOOK_SECRET:
            logger.warning("⚠ INGEST_WEBHOOK_SECRET not configured, protected routes return 500")
        if not settings.GEMINI_API_KEY:
            logger.warning("⚠ GEMINI_API_KEY not configured, ingestion routes return 500")

        logger.info("✓ PayWatch startup complete - Ready to process requests")

        yield

        # Shutdown
        logger.info("🛑 Shutting down PayWatch ingest service...")
        await database.dispose()
        logger.info("✓ PayWatch shutdown complete")

    app = FastAPI(title="PayWatch Ingest", version=__version__, lifespan=lifespan)
    app.state.llm_transport = None
    app.state.gmail_transport = None
    app.middleware("http")(request_id_middleware)
    app.include_router(ingestion_router)
    app.include_router(transactions_router)

    @app.get("/healthz")
    def healthz():
        logger.debug(f"Healthz endpoint called (env: {settings.ENV})")
        return {"status": "healthy", "env": settings.ENV}

    return app


app = create_app()
