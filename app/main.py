from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import get_settings
from app.core.logging import configure_logging, request_id_middleware
from app.operations.poller import get_poller_registry
from app.operations.router import close_operation_client, get_operation_client
from app.operations.router import router as operations_router
from app.webhooks.router import router as webhooks_router

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.ENV)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    # Startup
    logger.info("=" * 70)
    logger.info("Starting Bank Operation Tracker...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(
        f"Database: {settings.DATABASE_URL.split('/')[-1] if settings.DATABASE_URL else 'Not configured'}"
    )
    logger.info("=" * 70)

    client = get_operation_client()
    logger.info(f"Provider client: {client.get_source_name()}")
    if not await client.validate_credentials():
        logger.warning("Provider credentials are missing; operation calls will fail")

    if not settings.PAYMENT_WEBHOOK_SECRET:
        logger.critical(
            "PAYMENT_WEBHOOK_SECRET is not configured; every webhook delivery will be rejected"
        )

    logger.info("Startup complete - ready to process requests")

    yield

    # Shutdown
    logger.info("Shutting down Bank Operation Tracker...")

    registry = get_poller_registry()
    if len(registry):
        logger.info(f"Stopping {len(registry.active())} active pollers...")
    registry.close_all()

    await close_operation_client()
    logger.info("Shutdown complete")


app = FastAPI(title="Bank Operation Tracker", version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(operations_router)
app.include_router(webhooks_router)


@app.get("/")
def health_check():
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    logger.debug(f"Healthz endpoint called (env: {settings.ENV})")
    return {"status": "healthy", "env": settings.ENV}
