from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import (
    ConcurrencyConflict,
    EngineError,
    GuardViolation,
    NotFoundError,
    PermissionDenied,
    PersistenceFailure,
    ValidationError,
)
from app.database import init_db, async_session_factory
from app.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables (migrations are applied separately with alembic)
    - Start background scheduler (daily overdue sweep)
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    logger.info(f"Stopped {settings.APP_NAME}")


API_DESCRIPTION = """
## Stone Fabrication Order Engine

Quote -> order lifecycle, invoicing and payment reconciliation, and slab
stock reservation.

### Identity

Every request carries `X-Actor-Id`, `X-Actor-Name` and `X-Actor-Role`
(ADMIN, SALES_REP, MANAGER, FINANCE, FACTORY).

### Error Codes

| Code | Description |
|------|-------------|
| 401 | Missing actor headers |
| 403 | Role not allowed to perform the action |
| 404 | Not Found - Resource doesn't exist |
| 409 | Business rule violated (reason in `details`) or concurrent update (`retryable`) |
| 422 | Validation failed |
| 503 | Database unavailable (`retryable`) |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


# Engine error -> HTTP status. Order matters: most specific first.
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (PermissionDenied, 403),
    (GuardViolation, 409),
    (ConcurrencyConflict, 409),
    (PersistenceFailure, 503),
)


def _status_for(exc: EngineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _error_response(request: Request, exc: EngineError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")

    response = JSONResponse(
        status_code=status_code,
        content={
            "error": exc.to_dict(),
            "path": str(request.url.path),
            "method": request.method,
        },
    )

    # Add CORS headers if origin is allowed
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    """Map engine errors to HTTP responses with a structured body."""
    return _error_response(request, exc)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Database errors that escaped a service (e.g. on a read) are reported as a retryable 503."""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return _error_response(request, PersistenceFailure("Database unavailable, please retry"))


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except (SQLAlchemyError, OSError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    health_status["checks"]["scheduler"] = {
        "enabled": settings.SCHEDULER_ENABLED,
        "jobs": get_job_status(),
    }

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
