"""Job service: the operations behind the job API, all pre-scoped to a tenant."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.jobs.coordinator import ExecutionCoordinator, ExecutionOutcome
from app.jobs.errors import ConflictError, TerminalExecutionError, ValidationError
from app.jobs.models import Job, JobStatus, utcnow
from app.jobs.reporting import build_report, compute_statistics
from app.jobs.scheduler import Scheduler
from app.jobs.schemas import ExecuteRequest, JobBatchCreate, JobCreate, JobUpdate, ReportRequest
from app.jobs.store import JobPage, JobQuery, JobStore
from app.models.base import ModelType
from app.models.registry import ModelRegistry, registry as default_registry
from app.subjects.repository import Subject, SubjectRepository

logger = logging.getLogger(__name__)

# JobUpdate fields that may be omitted but never set to null
REQUIRED_UPDATE_FIELDS = ("name", "priority", "max_attempts", "model_options", "processing_params")


class JobService:

    def __init__(
        self,
        store: JobStore,
        subjects: SubjectRepository,
        coordinator: ExecutionCoordinator,
        scheduler: Optional[Scheduler] = None,
        registry: Optional[ModelRegistry] = None,
    ):
        self.store = store
        self.subjects = subjects
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.registry = registry or default_registry

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _validate_subject(self, model_type: ModelType, subject: Subject) -> None:
        spec = self.registry.get(model_type)
        extension = subject.extension
        if extension and not spec.supports_format(extension):
            raise ValidationError(
                f"Model {model_type.value} does not support format {extension}. "
                f"Supported formats: {', '.join(spec.supported_formats)}"
            )
        if subject.size_bytes is not None and subject.size_bytes > spec.max_file_size:
            raise ValidationError(
                f"File size {subject.size_bytes} exceeds the {spec.max_file_size} byte "
                f"limit of model {model_type.value}"
            )

    async def _create_for_subject(
        self,
        data: JobCreate,
        subject: Subject,
        initiated_by: Optional[str],
        tenant_id: str,
        now: datetime,
    ) -> Job:
        self._validate_subject(data.model_type, subject)

        fields: Dict[str, Any] = {}
        if data.max_attempts is not None:
            fields["max_attempts"] = data.max_attempts
        job = Job(
            tenant_id=tenant_id,
            name=data.name,
            description=data.description,
            subject_id=subject.id,
            initiated_by=initiated_by,
            model_type=data.model_type,
            priority=data.priority or self.registry.priority_for(subject.subject_type),
            model_options=data.model_options,
            processing_params=data.processing_params,
            scheduled_for=data.scheduled_for,
            created_at=now,
            **fields,
        )
        job.add_log("create", f"Job created for model {job.model_type.value}", now=now)

        if data.scheduled_for is not None and data.scheduled_for > now:
            job.add_log("schedule", f"Scheduled for {data.scheduled_for.isoformat()}", now=now)
        else:
            job.enqueue(now=now)

        saved = await self.store.create(job)
        logger.info(
            "Job created",
            extra={
                "job_id": saved.id,
                "tenant_id": tenant_id,
                "model_type": saved.model_type.value,
                "priority": saved.priority,
                "status": saved.status.value,
            },
        )
        return saved

    def _wake_scheduler(self) -> None:
        if self.scheduler is not None:
            self.scheduler.wake()

    async def create_job(
        self,
        data: JobCreate,
        initiated_by: Optional[str],
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> Job:
        subject = await self.subjects.get_by_id(data.subject_id, tenant_id)
        job = await self._create_for_subject(data, subject, initiated_by, tenant_id, now or utcnow())
        self._wake_scheduler()
        return job

    async def create_batch(
        self,
        data: JobBatchCreate,
        initiated_by: Optional[str],
        tenant_id: str,
    ) -> List[Job]:
        """One job per subject. All subjects must exist before any job is created."""
        subjects = await self.subjects.get_many(data.subject_ids, tenant_id)
        for subject in subjects:
            self._validate_subject(data.model_type, subject)

        jobs = []
        total = len(subjects)
        for index, subject in enumerate(subjects, start=1):
            create = JobCreate(
                name=f"{data.base_name} - {subject.original_name} ({index}/{total})"[:100],
                subject_id=subject.id,
                model_type=data.model_type,
                priority=data.priority,
                model_options=data.model_options,
                processing_params=data.processing_params,
            )
            jobs.append(await self._create_for_subject(create, subject, initiated_by, tenant_id, utcnow()))

        logger.info(
            "Batch created",
            extra={"tenant_id": tenant_id, "count": len(jobs), "model_type": data.model_type.value},
        )
        self._wake_scheduler()
        return jobs

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_jobs(self, tenant_id: str, query: Optional[JobQuery] = None) -> JobPage:
        return await self.store.search(tenant_id, query or JobQuery())

    async def get_job(self, job_id: str, tenant_id: str) -> Job:
        return await self.store.get(job_id, tenant_id)

    async def get_queue(self, tenant_id: str, limit: int = 10) -> List[Job]:
        return await self.store.eligible(limit=limit, tenant_id=tenant_id)

    async def get_statistics(self, tenant_id: str) -> Dict[str, Any]:
        return compute_statistics(await self.store.list_jobs(tenant_id))

    async def generate_report(self, tenant_id: str, request: Optional[ReportRequest] = None) -> Dict[str, Any]:
        request = request or ReportRequest()
        query = JobQuery(
            created_from=request.start_date,
            created_to=request.end_date,
            model_types=[m.value for m in request.model_types] or None,
            statuses=list(request.statuses) or None,
        )
        jobs = await self.store.list_jobs(tenant_id, query)
        return build_report(jobs, request.start_date, request.end_date, request.include_results)

    async def recommended_models(self, subject_id: str, tenant_id: str) -> Dict[str, List[str]]:
        subject = await self.subjects.get_by_id(subject_id, tenant_id)
        recommended = [m.value for m in self.registry.recommended_for(subject.subject_type)]
        return {
            "primary": recommended[:2],
            "secondary": recommended[2:4],
            "specialized": recommended[4:],
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_job(self, job_id: str, data: JobUpdate, tenant_id: str) -> Job:
        changes = data.model_dump(exclude_unset=True)
        nulls = sorted(name for name in REQUIRED_UPDATE_FIELDS if name in changes and changes[name] is None)
        if nulls:
            raise ValidationError(f"Fields cannot be null: {', '.join(nulls)}", job_id=job_id)

        def _apply(job: Job) -> None:
            if job.is_processing:
                raise ConflictError("Cannot update a job while it is processing", job_id=job.id)
            max_attempts = changes.get("max_attempts")
            if max_attempts is not None and max_attempts < job.attempt_count:
                raise ValidationError(
                    f"max_attempts cannot be lower than the {job.attempt_count} attempts already made",
                    job_id=job.id,
                )
            for name, value in changes.items():
                if name == "max_attempts":
                    job.set_max_attempts(value)
                else:
                    setattr(job, name, value)
            job.add_log("update", f"Job updated: {', '.join(sorted(changes))}")

        job = await self.store.mutate(job_id, tenant_id, _apply)
        self._wake_scheduler()
        return job

    async def execute_job(
        self,
        job_id: str,
        tenant_id: str,
        request: Optional[ExecuteRequest] = None,
    ) -> ExecutionOutcome:
        request = request or ExecuteRequest()
        job = await self.store.get(job_id, tenant_id)

        if job.is_processing or self.coordinator.is_running(job_id):
            raise ConflictError("Job is already processing", job_id=job_id)
        if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            raise ConflictError(f"Job is {job.status.value} and cannot be executed", job_id=job_id)
        if not request.force:
            if job.status == JobStatus.FAILED and job.attempts_remaining == 0:
                raise TerminalExecutionError(
                    f"Job exhausted its {job.max_attempts} attempts. Use force=true to restart it.",
                    job_id=job_id,
                )
            if not job.can_execute:
                raise ConflictError(
                    f"Job cannot be executed in status {job.status.value} yet. Use force=true to force it.",
                    job_id=job_id,
                )

        if request.force:
            logger.warning(
                "Forced execution requested",
                extra={"job_id": job_id, "tenant_id": tenant_id, "override": True},
            )
        return await self.coordinator.execute(
            job_id,
            tenant_id,
            force=request.force,
            worker_id=request.worker_id,
            timeout=request.timeout,
        )

    async def cancel_job(self, job_id: str, tenant_id: str, reason: Optional[str] = None) -> Job:
        """Cancel a non-terminal job. Cancelling a terminal job raises ConflictError."""
        job = await self.store.mutate(job_id, tenant_id, lambda j: j.cancel(reason))
        aborted = self.coordinator.abort(job_id)
        logger.info(
            "Job cancelled",
            extra={"job_id": job_id, "tenant_id": tenant_id, "reason": reason, "aborted_in_flight": aborted},
        )
        return job
