"""
Pyra Automation Engine

FastAPI application entry point.
"""
import asyncio
import contextlib
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Import observability modules
from pyra_engine.config import settings
from pyra_engine.database import AsyncSessionLocal, engine as db_engine
from pyra_engine.logging_config import configure_logging, logger
from pyra_engine.sentry_config import configure_sentry
from pyra_engine.middleware.logging import LoggingMiddleware
from pyra_engine.routes.metrics import router as metrics_router

# Import route modules
from pyra_engine.routes.automations import router as automations_router
from pyra_engine.routes.events import router as events_router
from pyra_engine.routes.webhooks import router as webhooks_router

from pyra_engine.services.engine import build_engine
from pyra_engine.services.webhook_service import run_retry_sweeper

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup; stop the sweeper and drain dispatches on shutdown."""
    http_client = httpx.AsyncClient()
    app.state.engine = build_engine(AsyncSessionLocal, http_client)

    sweeper = None
    if settings.RETRY_SWEEPER_ENABLED:
        sweeper = asyncio.create_task(
            run_retry_sweeper(app.state.engine.scheduler, settings.RETRY_SWEEP_INTERVAL_SECONDS),
            name="retry-sweeper",
        )
    logger.info("engine_started", sweeper=sweeper is not None)

    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        await app.state.engine.dispatcher.drain()
        await http_client.aclose()
        await db_engine.dispose()
        logger.info("engine_stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event-triggered automation rules and signed webhook delivery",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

app.include_router(automations_router)
app.include_router(webhooks_router)
app.include_router(events_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.warning("health_database_unavailable", error=str(e))
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
    }
