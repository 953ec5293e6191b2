"""StockWatch -- FastAPI Application Entry Point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from stockwatch.api.v1.router import api_v1_router
from stockwatch.config import settings
from stockwatch.container import MonitorContainer
from stockwatch.db.seed import seed_store_profiles
from stockwatch.db.session import async_session_factory, engine
from stockwatch.logging_config import configure_logging
from stockwatch.models.base import Base
from stockwatch.scrapers.scheduler import MonitorScheduler

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("api_starting", environment=settings.ENVIRONMENT, debug=settings.DEBUG)

    # Auto-create tables on startup (safe for fresh deployments)
    try:
        # Import all models so they register with Base.metadata
        import stockwatch.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_ready")

        await seed_store_profiles(async_session_factory)
    except Exception as e:
        logger.error("database_init_failed", error=str(e), exc_info=True)

    container = MonitorContainer.build(async_session_factory)
    app.state.container = container
    app.state.scheduler = None

    # Background checks only outside tests
    if settings.ENVIRONMENT != "test":
        scheduler = MonitorScheduler(
            container.checker,
            container.watcher,
            tick_seconds=settings.SCHEDULER_TICK_SECONDS,
        )
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("scheduler_disabled", reason="test environment")

    yield

    logger.info("api_shutting_down")
    if app.state.scheduler is not None:
        app.state.scheduler.stop()

    try:
        await container.close()
    except Exception as e:
        logger.warning("container_close_failed", error=str(e))
    app.state.container = None


app = FastAPI(
    title="StockWatch API",
    description="Product stock, price and keyword discovery monitor",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "StockWatch API",
        "version": "0.1.0",
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
