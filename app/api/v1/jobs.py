"""Job management API: submit, search, execute and cancel recognition jobs."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Query

from app.jobs.errors import ConflictError, JobError, NotFoundError, ValidationError
from app.jobs.models import JobStatus
from app.jobs.schemas import (
    CancelRequest,
    ExecuteRequest,
    JobBatchCreate,
    JobCreate,
    JobUpdate,
    ReportRequest,
)
from app.jobs.store import JobQuery
from app.models.base import ModelType

router = APIRouter()

# Set by main.py during lifespan
_service = None


def set_service(service):
    global _service
    _service = service


def _get_service():
    if _service is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")
    return _service


def _http_error(error: JobError) -> HTTPException:
    if isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, ConflictError):
        status_code = 409
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=error.to_dict())


@router.post("/jobs", status_code=201)
async def create_job(
    request: JobCreate,
    x_tenant_id: str = Header(...),
    x_user_id: Optional[str] = Header(None),
):
    """Submit a recognition job for one subject."""
    service = _get_service()
    try:
        job = await service.create_job(request, x_user_id, x_tenant_id)
    except JobError as e:
        raise _http_error(e)
    return job.to_response()


@router.post("/jobs/batch", status_code=201)
async def create_batch(
    request: JobBatchCreate,
    x_tenant_id: str = Header(...),
    x_user_id: Optional[str] = Header(None),
):
    """Submit one job per subject. Fails without creating anything if a subject is missing."""
    service = _get_service()
    try:
        jobs = await service.create_batch(request, x_user_id, x_tenant_id)
    except JobError as e:
        raise _http_error(e)
    return {"jobs": [j.to_response() for j in jobs], "count": len(jobs)}


@router.get("/jobs")
async def list_jobs(
    x_tenant_id: str = Header(...),
    status: Optional[List[JobStatus]] = Query(None),
    model_type: Optional[List[ModelType]] = Query(None),
    priority: Optional[int] = Query(None, ge=1, le=5),
    subject_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
    search: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    can_execute: Optional[bool] = None,
    can_retry: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Search the tenant's jobs, highest priority and oldest first."""
    service = _get_service()
    query = JobQuery(
        statuses=status,
        model_types=model_type,
        priority=priority,
        subject_id=subject_id,
        initiated_by=initiated_by,
        search=search,
        created_from=created_from,
        created_to=created_to,
        can_execute=can_execute,
        can_retry=can_retry,
        page=page,
        limit=limit,
    )
    result = await service.find_jobs(x_tenant_id, query)
    return {
        "data": [j.to_response() for j in result.data],
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
    }


@router.get("/jobs/queue")
async def get_queue(x_tenant_id: str = Header(...), limit: int = Query(10, ge=1, le=100)):
    """Jobs that would be picked next, in scheduling order."""
    service = _get_service()
    jobs = await service.get_queue(x_tenant_id, limit=limit)
    return {
        "jobs": [
            {"id": j.id, "name": j.name, "priority": j.priority, **j.status_summary()}
            for j in jobs
        ]
    }


@router.get("/jobs/statistics")
async def get_statistics(x_tenant_id: str = Header(...)):
    service = _get_service()
    return await service.get_statistics(x_tenant_id)


@router.post("/jobs/report")
async def generate_report(request: ReportRequest, x_tenant_id: str = Header(...)):
    service = _get_service()
    return await service.generate_report(x_tenant_id, request)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, x_tenant_id: str = Header(...)):
    """Full job record with the most recent processing log entries."""
    service = _get_service()
    try:
        job = await service.get_job(job_id, x_tenant_id)
    except JobError as e:
        raise _http_error(e)
    return job.to_response()


@router.get("/jobs/{job_id}/status")
async def get_job_status(job_id: str, x_tenant_id: str = Header(...)):
    service = _get_service()
    try:
        job = await service.get_job(job_id, x_tenant_id)
    except JobError as e:
        raise _http_error(e)
    return {"job_id": job.id, **job.status_summary()}


@router.patch("/jobs/{job_id}")
async def update_job(job_id: str, request: JobUpdate, x_tenant_id: str = Header(...)):
    service = _get_service()
    try:
        job = await service.update_job(job_id, request, x_tenant_id)
    except JobError as e:
        raise _http_error(e)
    return job.to_response()


@router.post("/jobs/{job_id}/execute")
async def execute_job(
    job_id: str,
    request: Optional[ExecuteRequest] = None,
    x_tenant_id: str = Header(...),
):
    """Start a job now (or queue it at the tenant's concurrency limit)."""
    service = _get_service()
    try:
        outcome = await service.execute_job(job_id, x_tenant_id, request)
    except JobError as e:
        raise _http_error(e)
    return outcome.to_dict()


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    request: Optional[CancelRequest] = None,
    x_tenant_id: str = Header(...),
):
    service = _get_service()
    reason = request.reason if request else None
    try:
        job = await service.cancel_job(job_id, x_tenant_id, reason)
    except JobError as e:
        raise _http_error(e)
    return job.to_response()


@router.get("/subjects/{subject_id}/recommended-models")
async def recommended_models(subject_id: str, x_tenant_id: str = Header(...)):
    service = _get_service()
    try:
        return await service.recommended_models(subject_id, x_tenant_id)
    except JobError as e:
        raise _http_error(e)
