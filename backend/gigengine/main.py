"""
FastAPI application entry point for the gig engine.

This is the main app that:
- Initializes FastAPI with CORS
- Registers the gigs router and maps engine errors to response envelopes
- Provides health check endpoint
- Owns process-wide state: loads the geo index at startup, optionally runs
  the background sweep, disposes the database engine at shutdown
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from gigengine import database
from gigengine.api import gigs
from gigengine.config import settings
from gigengine.errors import GigEngineError
from gigengine.schemas.common import ErrorResponse
from gigengine.services.geo_index import GeoIndex
from gigengine.services.sweeper import rebuild_geo_index, sweep_forever

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    On startup: Load the geo index from storage, start the sweep task if enabled
    On shutdown: Stop the sweep, close database connections gracefully
    """
    # Startup
    logger.info("Starting gig engine API...")
    logger.info(f"Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'configured'}")
    logger.info(f"Debug mode: {settings.debug}")

    async with database.AsyncSessionLocal() as db:
        indexed = await rebuild_geo_index(db, app.state.geo_index)
    logger.info(f"Geo index ready with {indexed} gigs")

    sweep_task = None
    if settings.enable_background_sweep:
        sweep_task = asyncio.create_task(
            sweep_forever(
                lambda: database.AsyncSessionLocal(),
                app.state.geo_index,
                settings.sweep_interval_seconds,
            )
        )

    yield

    # Shutdown
    logger.info("Shutting down gig engine API...")
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    await database.engine.dispose()


# Initialize FastAPI app
app = FastAPI(
    title="Gig Engine API",
    description="Local gig marketplace: posting, search, applications and assignment",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
)
app.state.geo_index = GeoIndex(settings.geo_cell_size_degrees)

# Configure CORS
# Set ALLOWED_ORIGINS environment variable with comma-separated domains
allowed_origins = [
    "http://localhost:3000",  # Local development
]
if settings.allowed_origins:
    allowed_origins.extend(o.strip() for o in settings.allowed_origins.split(',') if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, code: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=error, code=code, details=details)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(GigEngineError)
async def engine_error_handler(request: Request, exc: GigEngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return _error(exc.status_code, exc.message, exc.code, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return _error(400, "Invalid request", "validation_error", details)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    codes = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}
    return _error(exc.status_code, str(exc.detail), codes.get(exc.status_code, "http_error"))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return _error(500, "Internal server error", "internal_error")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return _error(500, "Internal server error", "internal_error")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Simple health check endpoint."""
    return {
        "status": "healthy",
        "service": "Gig Engine API",
        "version": "1.0.0",
        "indexed_gigs": len(app.state.geo_index),
    }


# Register API routers
app.include_router(gigs.router, prefix="/api/gigs", tags=["gigs"])
