"""
Health check endpoints.

Used for monitoring and load balancer health checks.
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse
import logging
import platform

from api.dependencies import (
    get_database_engine,
    get_permission_service,
    get_worker_pool,
    get_workflow_registry,
    uses_database_backend,
)
from tenantflow_sdk.utils.datetime import utc_now


logger = logging.getLogger(__name__)
router = APIRouter()

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns system health status.
    """
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": "tenantflow",
        "version": VERSION,
        "python_version": platform.python_version(),
    }


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness check endpoint.

    Ready once the workflows are registered, the worker pool runs and the
    execution store (if durable) answers.
    """
    checks = {
        "api": "ok",
        "workflows": f"{len(get_workflow_registry().names())} registered",
        "workers": "running" if get_worker_pool().running else "stopped",
        "permission_cache": get_permission_service().stats().to_dict(),
    }
    ready = get_worker_pool().running

    if uses_database_backend():
        from sqlalchemy import text

        try:
            async with get_database_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            logger.warning(f"Readiness: database check failed: {e}")
            checks["database"] = f"error: {e}"
            ready = False

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "timestamp": utc_now().isoformat(),
            "checks": checks,
        },
    )
