"""Health check endpoints."""

import time

import structlog
from fastapi import APIRouter, Depends, Response

from parley import __version__
from parley.api.deps import Services, get_services
from parley.kernel.time import isoformat_z, utc_now

router = APIRouter()
logger = structlog.get_logger()

_startup_monotonic = time.monotonic()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if the service is running.
    """
    return {
        "status": "UP",
        "service": "parley",
        "version": __version__,
        "timestamp": isoformat_z(utc_now()),
        "uptime_seconds": round(time.monotonic() - _startup_monotonic, 3),
    }


@router.get("/health/ready")
async def readiness_check(response: Response, services: Services = Depends(get_services)):
    """
    Readiness check endpoint.
    Verifies the session store is reachable.
    """
    checks = {"session_store": await services.session_store.ping()}
    ready = all(checks.values())
    if not ready:
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = 503

    return {
        "status": "ready" if ready else "degraded",
        "checks": checks,
        "timestamp": isoformat_z(utc_now()),
    }


@router.get("/health/live")
async def liveness_check():
    """
    Liveness check for Kubernetes.
    Returns 200 if the process is alive.
    """
    return {"status": "alive"}
