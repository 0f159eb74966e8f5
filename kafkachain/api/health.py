"""Health check endpoints"""
import time
from datetime import datetime, timezone

from fastapi import APIRouter

from kafkachain import __version__
from kafkachain.config import settings

router = APIRouter(prefix="/health", tags=["health"])

# Track startup time
STARTUP_TIME = time.time()


@router.get("")
def health_check():
    """
    Basic health check endpoint

    Returns 200 if service is running
    """
    return {
        "status": "healthy",
        "service": "kafkachain",
        "version": __version__,
        "backend": settings.backend_scheme,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/live")
def liveness_check():
    """
    Liveness check - verifies service is alive

    Returns 200 if process is alive
    """
    return {
        "status": "alive",
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
