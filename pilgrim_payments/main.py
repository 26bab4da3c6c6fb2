"""Pilgrim Payments backend: FastAPI application entry point."""

import signal
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# (structlog caches the processor chain on first use).
from pilgrim_payments.core.logging import configure_structlog
from pilgrim_payments.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
    api_version=_early_settings.api_version,
)

import structlog

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pilgrim_payments.api.envelope import error_response
from pilgrim_payments.api.routes import api_router
from pilgrim_payments.core.config import get_settings
from pilgrim_payments.core.exceptions import ApiError, ErrorCode
from pilgrim_payments.db import close_db, close_redis, init_db, init_redis
from pilgrim_payments.middleware.correlation import get_request_id, setup_correlation_middleware
from pilgrim_payments.services.maintenance_service import MaintenanceLoop, MaintenanceService

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()

    stats_cache = await init_redis()
    logger.info("redis_initialized", stats_cache_enabled=stats_cache)

    maintenance_loop = None
    if settings.maintenance_interval_seconds > 0:
        maintenance_loop = MaintenanceLoop(MaintenanceService, settings.maintenance_interval_seconds)
        maintenance_loop.start()

    yield

    logger.info("shutdown_begin")
    if maintenance_loop is not None:
        await maintenance_loop.stop()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Convert a coded ApiError into the standard envelope."""
    logger.info(
        "api_error",
        code=exc.code.value,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
    )
    return error_response(exc, get_request_id())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled errors: logs the traceback, returns SYSTEM_001.

    No internal details reach the client.
    """
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return error_response(ApiError(ErrorCode.SYSTEM_001), get_request_id())


def create_app(lifespan_handler=lifespan) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Idempotent payment processing for proxy pilgrimage bookings",
        version=settings.api_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan_handler,
    )

    # No CORSMiddleware: routes answer preflights with CORS_HEADERS verbatim.
    setup_correlation_middleware(app)

    app.exception_handler(ApiError)(api_error_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pilgrim_payments.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
