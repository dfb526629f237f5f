"""Recognition job service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import v1_router
from app.api.v1.health import router as health_root_router
from app.api.v1 import health as health_api
from app.api.v1 import jobs as jobs_api
from app.jobs.coordinator import ExecutionCoordinator
from app.jobs.gate import ConcurrencyGate
from app.jobs.retry import RetryPolicy
from app.jobs.scheduler import Scheduler
from app.jobs.service import JobService
from app.jobs.store import InMemoryJobStore, JobStore
from app.jobs.worker_client import RecognitionWorkerClient
from app.subjects.repository import (
    InMemorySubjectRepository,
    SubjectRepository,
    SupabaseSubjectRepository,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    store: JobStore
    subjects: SubjectRepository
    worker: RecognitionWorkerClient
    coordinator: ExecutionCoordinator
    scheduler: Scheduler
    service: JobService


def build_runtime() -> Runtime:
    """Wire the job lifecycle components for the configured store backend."""
    if settings.job_store_backend == "supabase":
        from app.jobs.supabase_store import SupabaseJobStore
        store = SupabaseJobStore()
        subjects = SupabaseSubjectRepository()
    elif settings.job_store_backend == "memory":
        store = InMemoryJobStore()
        subjects = InMemorySubjectRepository()
    else:
        raise RuntimeError(f"Unknown JOB_STORE_BACKEND: {settings.job_store_backend}")

    worker = RecognitionWorkerClient()
    coordinator = ExecutionCoordinator(
        store,
        subjects,
        worker,
        gate=ConcurrencyGate(),
        retry_policy=RetryPolicy(),
    )
    scheduler = Scheduler(store, coordinator)
    service = JobService(store, subjects, coordinator, scheduler=scheduler)
    return Runtime(store, subjects, worker, coordinator, scheduler, service)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info(
        "Starting recognition job service",
        extra={
            "port": settings.compute_port,
            "backend": settings.job_store_backend,
            "worker_base_url": settings.worker_base_url,
        },
    )
    runtime = build_runtime()

    recovered = await runtime.coordinator.recover_orphans()
    if recovered:
        logger.warning("Recovered orphaned jobs", extra={"count": recovered})

    if settings.scheduler_enabled:
        await runtime.scheduler.start()
        logger.info("Scheduler started", extra={"poll_interval": runtime.scheduler.poll_interval})

    # Wire the service into API endpoints
    jobs_api.set_service(runtime.service)
    health_api.set_runtime(runtime.scheduler, runtime.coordinator)
    app.state.runtime = runtime

    yield

    logger.info("Shutting down recognition job service")
    await runtime.scheduler.stop()
    await runtime.coordinator.stop()
    await runtime.worker.close()


app = FastAPI(
    title="Recognition Job Service",
    description="Lifecycle management for AI recognition jobs on plan documents",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow frontend dev server and any configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
