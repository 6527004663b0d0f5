"""
Health Check Router

Provides health check endpoints for monitoring application status.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_runtime.db.config import get_session
from scorm_runtime.models.schemas import HealthCheckResponse
from scorm_runtime.services.content_proxy import CONTENT_DIR
from scorm_runtime.services.launches import LaunchRegistry, get_launch_registry
from scorm_runtime.utils.feature_flags import feature_flags
import logging
import time
import os
import sys
from datetime import datetime

logger = logging.getLogger(__name__)

# Initialize router
router = APIRouter()

# Application start time for uptime calculation
_start_time = time.time()


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        return False


@router.get("/health", response_model=HealthCheckResponse, summary="Basic Health Check")
async def health_check():
    """
    Basic health check endpoint

    Returns application status, version, and environment information.
    This endpoint is used by load balancers and monitoring systems.
    """
    uptime = time.time() - _start_time

    return HealthCheckResponse(
        status="healthy",
        version=os.getenv("APP_VERSION", "1.0.0"),
        environment=os.getenv("ENVIRONMENT", "development"),
        timestamp=datetime.utcnow(),
        uptime=uptime
    )


@router.get("/health/detailed", summary="Detailed Health Check")
async def detailed_health_check(
    db: AsyncSession = Depends(get_session),
    registry: LaunchRegistry = Depends(get_launch_registry),
):
    """
    Detailed health check with dependency validation

    Checks the database connection, the content store and reports active
    launches and feature flags.
    """
    uptime = time.time() - _start_time
    database_ok = await _database_ok(db)
    content_ok = CONTENT_DIR.is_dir()

    return {
        "status": "healthy" if database_ok and content_ok else "degraded",
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "environment": os.getenv("ENVIRONMENT", "development"),
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": uptime,
        "services": {
            "database": {"status": "up" if database_ok else "down"},
            "content_store": {
                "status": "up" if content_ok else "missing",
                "path": str(CONTENT_DIR),
            },
            "runtime": {"status": "up", "active_launches": len(registry)},
        },
        "features": feature_flags.get_environment_info(),
        "details": {
            "python_version": sys.version,
            "startup_time": datetime.fromtimestamp(_start_time).isoformat()
        }
    }


@router.get("/health/ready", summary="Readiness Check")
async def readiness_check(db: AsyncSession = Depends(get_session)):
    """
    Kubernetes-style readiness probe

    Returns 200 if the database answers, 503 otherwise.
    """
    if not await _database_ok(db):
        raise HTTPException(
            status_code=503,
            detail="Application not ready: database unavailable"
        )
    return {"status": "ready", "timestamp": datetime.utcnow().isoformat()}


@router.get("/health/live", summary="Liveness Check")
async def liveness_check():
    """
    Kubernetes-style liveness probe
    """
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat(),
        "pid": os.getpid()
    }
