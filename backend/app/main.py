"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from app.api import router, websocket_endpoint
from app.clients import HttpAdvisoryOracle
from app.config import Settings, get_settings
from app.market_config import MarketConfig, load_market_config
from app.services import Scheduler
from app.storage import InMemoryLedgerStore, LedgerRepository, cache, get_database, init_database
from core.protocols import LedgerStore

APP_NAME = "Market Pulse"
VERSION = "0.1.0"

logger = logging.getLogger(__name__)


async def seed_demo_holdings(repo: LedgerRepository, market_config: MarketConfig) -> None:
    """Write the configured demo holdings into a ledger without positions."""
    if not market_config.demo_holdings or await repo.get_user_ids():
        return

    for entry in market_config.demo_holdings:
        await repo.save_holding(entry.to_holding())
    logger.info(f"Seeded {len(market_config.demo_holdings)} demo holding(s)")


async def open_ledger(settings: Settings, market_config: MarketConfig) -> LedgerStore:
    """Open the configured ledger backend, seeding demo holdings if empty."""
    if settings.ledger_backend == "memory":
        logger.info("Using in-memory ledger (nothing is persisted)")
        return InMemoryLedgerStore([e.to_holding() for e in market_config.demo_holdings])

    try:
        await asyncio.wait_for(init_database(), timeout=30)
    except asyncio.TimeoutError:
        raise RuntimeError("Database initialization timed out after 30s")
    logger.info("Database initialized")

    repo = LedgerRepository()
    await seed_demo_holdings(repo, market_config)
    return repo


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Starting {APP_NAME}...")

    settings = get_settings()

    # Track initialization state for proper cleanup on failure
    db_initialized = False
    cache_initialized = False
    oracle: HttpAdvisoryOracle | None = None
    scheduler: Scheduler | None = None

    try:
        market_config = load_market_config()

        db_initialized = settings.ledger_backend == "postgres"
        ledger = await open_ledger(settings, market_config)

        # Initialize Redis cache with timeout
        try:
            await asyncio.wait_for(cache.init_cache(), timeout=10)
            cache_initialized = True
            if cache.is_cache_available():
                logger.info("Redis cache initialized")
            else:
                logger.warning("Redis cache unavailable - running without price mirror")
        except asyncio.TimeoutError:
            logger.warning("Redis cache initialization timed out - running without price mirror")
            cache_initialized = True  # Mark as initialized to skip cleanup

        if not settings.oracle_api_key:
            logger.warning("No oracle API key configured - serving fallback recommendations")
        oracle = HttpAdvisoryOracle(
            base_url=settings.oracle_url,
            api_key=settings.oracle_api_key,
            model=settings.oracle_model,
            timeout=settings.oracle_timeout * 2,
        )

        scheduler = Scheduler.create(settings, market_config, oracle, ledger)
        scheduler.start()
        logger.info(
            f"Market loop started: {len(scheduler.engine.symbols)} symbols "
            f"every {settings.market_interval}s"
        )

        app.state.scheduler = scheduler
        app.state.hub = scheduler.hub

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        # Cleanup on startup failure
        if scheduler:
            try:
                await scheduler.stop()
            except Exception as cleanup_err:
                logger.warning(f"Error stopping scheduler: {cleanup_err}")
        if oracle:
            await oracle.close()
        if cache_initialized:
            try:
                await cache.close_cache()
            except Exception as cleanup_err:
                logger.warning(f"Error closing cache: {cleanup_err}")
        if db_initialized:
            try:
                await get_database().close()
            except Exception as cleanup_err:
                logger.warning(f"Error closing database: {cleanup_err}")
        raise  # Re-raise to prevent app from starting in broken state

    yield

    # Shutdown
    logger.info("Shutting down...")

    # Stop loops first (no more ticks or valuations)
    app.state.scheduler = None
    await scheduler.stop()

    await oracle.close()

    # Close Redis cache
    await cache.close_cache()

    # Close database connections
    if db_initialized:
        try:
            await get_database().close()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")

    logger.info("Shutdown complete")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title=APP_NAME,
    description="Real-time market analytics and portfolio valuation",
    version=VERSION,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST routes
app.include_router(router, prefix="/api")

# WebSocket endpoint
app.websocket("/ws/market")(websocket_endpoint)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": APP_NAME,
        "version": VERSION,
        "docs": "/docs",
        "websocket": "/ws/market",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
