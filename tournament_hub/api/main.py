"""
Tournament Hub API Server

FastAPI server for tournament registration, team formation and site
administration.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from tournament_hub.api.routes import router, limiter as routes_limiter
from tournament_hub.database import db
from tournament_hub.database.init_defaults import init_defaults
from tournament_hub.services.redis_service import close_redis_connection
from tournament_hub.services.websocket_manager import get_websocket_manager, WEBSOCKET_TIMEOUT_SECONDS

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def _stale_connection_sweeper():
    """Drop idle WebSocket subscribers every timeout period."""
    manager = get_websocket_manager()
    while True:
        await asyncio.sleep(WEBSOCKET_TIMEOUT_SECONDS)
        try:
            await manager.cleanup_stale_connections()
        except Exception as e:
            logger.warning(f"Error cleaning up stale WebSocket connections: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Tournament Hub API...")

    # Create tables that are not covered by migrations yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        # Don't raise - allow app to start even if initialization fails

    try:
        await init_defaults()
    except Exception as e:
        logger.error(f"Failed to initialize defaults: {e}", exc_info=True)

    sweeper = asyncio.create_task(_stale_connection_sweeper())

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Tournament Hub API...")

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass

    # Close Redis connection
    try:
        await close_redis_connection()
    except Exception as e:
        logger.error(f"Error closing Redis connection: {e}", exc_info=True)


app = FastAPI(
    title="Tournament Hub API",
    description="API for community tournament registration, team formation and site administration",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service status
    """
    return {"status": "healthy", "message": "API is running"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
