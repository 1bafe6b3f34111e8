"""Crypto Price Tracker FastAPI Application.

Stores CoinGecko market prices as per-asset history and serves latest
prices with trends and top-coin charts.
"""

import sys
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .models import init_db, async_session_maker
from .routers import crypto, health
from .services.coingecko import CoinGeckoClient
from .services.config import config_service, configure_logging, ConfigValidationException
from .services.scheduler import PriceUpdateScheduler
from .services.validation import validate_fetch_config

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Validate configuration
    try:
        config_service.load_and_validate()
        options = config_service.get_coingecko_options()
        validate_fetch_config(options)
    except ConfigValidationException as e:
        print(f"FATAL: {e}")
        print("Server cannot start with invalid configuration.")
        sys.exit(1)

    configure_logging(config_service)
    logger.info("Configuration validated successfully")

    await init_db()
    logger.info("Database initialized")

    scheduler = PriceUpdateScheduler(
        interval_seconds=config_service.ingestion_interval_seconds,
        session_factory=async_session_maker,
        client_factory=CoinGeckoClient,
        options=options,
    )
    app.state.price_update_scheduler = scheduler
    await scheduler.start()

    yield

    logger.info("Initiating graceful shutdown...")
    await scheduler.stop()
    logger.info("Graceful shutdown complete")


app = FastAPI(
    title="Crypto Price Tracker API",
    description="CoinGecko price history, trends and charts",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(crypto.router, prefix="/api/crypto", tags=["Crypto"])


@app.get("/")
async def root():
    """Root endpoint redirect to docs."""
    return {"message": "Crypto Price Tracker API", "docs": "/docs"}
