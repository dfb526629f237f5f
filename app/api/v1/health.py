"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

from app.config import settings

router = APIRouter()

# Set by main.py during lifespan
_scheduler = None
_coordinator = None


def set_runtime(scheduler, coordinator):
    global _scheduler, _coordinator
    _scheduler = scheduler
    _coordinator = coordinator


@router.get("/health")
async def health_check():
    """Service health, scheduler state and in-flight executions."""
    return {
        "status": "healthy",
        "job_store_backend": settings.job_store_backend,
        "scheduler_running": bool(_scheduler and _scheduler.running),
        "running_jobs": _coordinator.running_count() if _coordinator else 0,
        "in_flight_by_tenant": _coordinator.gate.snapshot() if _coordinator else {},
        "max_concurrent_jobs": settings.max_concurrent_jobs,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
