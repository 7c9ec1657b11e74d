"""Achadinhos scraper API -- FastAPI application entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from achadinhos import __version__
from achadinhos.api.v1.router import api_v1_router
from achadinhos.bootstrap import build_runtime
from achadinhos.config import settings
from achadinhos.core.logging import configure_logging
from achadinhos.db.session import engine
from achadinhos.db.utils import create_tables

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("api_starting", environment=settings.ENVIRONMENT, debug=settings.DEBUG)

    try:
        await create_tables(engine)
        logger.info("database_tables_verified")
    except Exception as e:
        logger.error("database_init_failed", error=str(e), exc_info=True)

    runtime = build_runtime()
    app.state.runtime = runtime

    # The scheduler runs in the API process unless disabled (tests, or a
    # separate `python -m achadinhos` daemon)
    if settings.ENVIRONMENT != "test" and settings.SCHEDULER_ENABLED:
        runtime.scheduler.start()
    else:
        logger.info("scheduler_disabled", environment=settings.ENVIRONMENT)

    yield

    logger.info("api_shutting_down")
    await runtime.aclose(settings.SHUTDOWN_GRACE_SECONDS)
    await engine.dispose()


app = FastAPI(
    title="Achadinhos Scraper API",
    description="Scheduled marketplace scraping with affiliate link tracking",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Achadinhos Scraper API",
        "version": __version__,
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
