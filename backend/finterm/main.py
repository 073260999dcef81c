"""FinTerm FastAPI Application.

Serves market session status, regional aggregates and freshness-gated
dashboard feeds.
"""

import sys
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .models import init_db
from .routers import health, markets, cache, data_sources
from .services.cache_sweeper import cache_sweeper, DEFAULT_SWEEP_INTERVAL_MINUTES
from .services.config import config_service, ConfigValidationException
from .services.freshness_cache import freshness_cache, DEFAULT_TTL_MINUTES
from .services.logging_service import configure_logging
from .services.market_hours import session_clock
from .services.regions import regional_aggregator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Validate configuration, including market session overrides
    try:
        config_service.load_and_validate()
        session_clock.configure(config_service.get("markets"))
        regional_aggregator.validate()
        print("Configuration validated successfully")
    except ConfigValidationException as e:
        print(f"FATAL: {e}")
        print("Server cannot start with invalid configuration.")
        sys.exit(1)

    configure_logging(
        config_service.get("logging.level", "INFO"),
        config_service.get("logging.format"),
    )

    # Initialize database
    await init_db()
    print("Database initialized")

    freshness_cache.default_ttl_minutes = config_service.get("cache.default_ttl_minutes", DEFAULT_TTL_MINUTES)

    # Drop entries that expired while the server was down
    try:
        removed = await freshness_cache.clear_expired()
        if removed > 0:
            print(f"Removed {removed} expired cache entries")
    except Exception as e:
        print(f"WARNING: Startup cache sweep failed: {e}")

    cache_sweeper.interval_minutes = config_service.get(
        "cache.sweep_interval_minutes", DEFAULT_SWEEP_INTERVAL_MINUTES
    )
    await cache_sweeper.start()
    print("Cache sweeper started")

    yield

    print("Initiating graceful shutdown...")

    await cache_sweeper.stop()
    print("Cache sweeper stopped")

    print("Graceful shutdown complete")


app = FastAPI(
    title="FinTerm API",
    description="Market session clock and dashboard data feeds",
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
app.include_router(markets.router, prefix="/api", tags=["Markets"])
app.include_router(cache.router, prefix="/api/cache", tags=["Cache"])
app.include_router(data_sources.router, prefix="/api/data-sources", tags=["Data Sources"])


@app.get("/")
async def root():
    """Root endpoint redirect to docs."""
    return {"message": "FinTerm API", "docs": "/docs"}
