"""Liveness and readiness probes for the payments service."""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from pilgrim_payments.core.config import get_settings
from pilgrim_payments.db.base import ping_db
from pilgrim_payments.db.redis import ping_redis

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "pilgrim-payments"


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for the load balancer.

    Returns 503 during graceful shutdown so traffic drains away.
    """
    version = get_settings().api_version
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE_NAME, "version": version},
        )
    return {"status": "healthy", "service": SERVICE_NAME, "version": version}


@router.get("/ready")
async def readiness_check():
    """Readiness check.

    The database is required: payments cannot be taken without it. Redis only
    backs the admin stats cache, so losing it degrades the service but keeps
    it ready unless ``REDIS_REQUIRED`` is set.
    """
    settings = get_settings()
    checks = {"database": await ping_db(), "redis": await ping_redis()}

    ready = checks["database"] and (checks["redis"] or not settings.redis_required)
    if not ready:
        status = "unavailable"
    elif all(checks.values()):
        status = "ready"
    else:
        status = "degraded"

    if status != "ready":
        logger.warning("readiness_check_failed", checks=checks, redis_required=settings.redis_required)

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": status,
            "checks": checks,
            "stats_cache": "enabled" if checks["redis"] else "disabled",
        },
    )
