"""Health check routes for the lab trend backend."""

from fastapi import APIRouter

from ..config import settings

SERVICE_NAME = "Lab Trend Backend"

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health endpoint with service metadata."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": settings.app_version,
    }


@router.get("/health/live")
async def liveness_check():
    """Simple liveness probe."""
    return {"status": "alive"}
