"""Job Board Backend API - FastAPI application."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from jobboard.config import get_board_settings
from jobboard.logging_config import get_logger, setup_jobboard_logging

from .config import get_settings
from .rate_limit import limiter
from .routes import applications_router, jobs_router, maintenance_router

logger = get_logger("backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_jobboard_logging(settings.log_level, settings.log_dir)
    logger.info(f"Starting Job Board Backend API (debug={settings.debug})")
    yield
    logger.info("Shutting down Job Board Backend API")


app = FastAPI(
    title="Job Board Backend API",
    description="Jobs, applications and the accept/reject decision workflow",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs_router)
app.include_router(applications_router)
app.include_router(maintenance_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "jobboard-backend",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    from .database import get_supabase_client

    def _ping():
        db = get_supabase_client()
        return db.table(get_board_settings().jobs_table).select("id").limit(1).execute()

    db_status = "disconnected"
    try:
        await asyncio.to_thread(_ping)
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": overall_status,
        "database": db_status,
    }
