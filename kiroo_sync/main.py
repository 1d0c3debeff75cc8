"""kiroo-sync API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .config import get_settings
from .database import MANGA_TABLE
from .logging_config import get_logger, setup_logging
from .rate_limit import limiter
from .routes import (
    api_keys_router,
    backup_router,
    data_router,
    manga_router,
    sync_router,
    sync_rpc_router,
)
from .sync import PayloadValidationError, SyncFailedError

logger = get_logger("kiroo_sync.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info(f"Starting kiroo-sync API (debug={settings.debug})")
    yield
    logger.info("Shutting down kiroo-sync API")


app = FastAPI(
    title="kiroo-sync API",
    description="Manga library sync backend for Tachiyomi-family readers",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


async def payload_validation_handler(request: Request, exc: PayloadValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Invalid sync payload", "details": str(exc)},
    )


async def sync_failed_handler(request: Request, exc: SyncFailedError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Sync failed", "details": str(exc)},
    )


app.add_exception_handler(PayloadValidationError, payload_validation_handler)
app.add_exception_handler(SyncFailedError, sync_failed_handler)

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
app.include_router(sync_router)
app.include_router(sync_rpc_router)
app.include_router(manga_router)
app.include_router(api_keys_router)
app.include_router(backup_router)
app.include_router(data_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "kiroo-sync",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    from .database import get_supabase_client

    db_status = "disconnected"
    try:
        db = get_supabase_client()
        db.table(MANGA_TABLE).select("id").limit(1).execute()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }
