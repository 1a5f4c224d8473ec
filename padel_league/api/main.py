"""
Padel League API Server

FastAPI server for team matchmaking, the match lifecycle and league
standings. The sweep scheduler runs inside the same process.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from padel_league.api.routes import router, limiter as routes_limiter
from padel_league.database import db
from padel_league.services.scheduler import build_default_scheduler
from padel_league.services.websocket_manager import get_websocket_manager

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Padel League API...")

    # Create tables if they don't exist (migrations are the primary path)
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    app.state.scheduler = None
    if SCHEDULER_ENABLED:
        try:
            scheduler = build_default_scheduler(sink=get_websocket_manager())
            scheduler.start()
            app.state.scheduler = scheduler
            logger.info("League scheduler started")
        except Exception as e:
            logger.error(f"Failed to start league scheduler: {e}", exc_info=True)
    else:
        logger.info("League scheduler disabled (SCHEDULER_ENABLED=false)")

    yield  # App is running

    logger.info("Shutting down Padel League API...")

    if app.state.scheduler is not None:
        try:
            await app.state.scheduler.stop()
        except Exception as e:
            logger.error(f"Error stopping league scheduler: {e}", exc_info=True)

    await db.engine.dispose()


app = FastAPI(
    title="Padel League API",
    description="Matchmaking, match lifecycle and standings for club padel leagues",
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

app.include_router(router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
