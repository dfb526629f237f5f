"""Execution coordinator: drives one job from admission to a final state.

Each admitted job runs in its own asyncio task. The task only touches the
job's own record (through ``JobStore.mutate``) right before and after the
worker call, and converts every error into the job's Failed state.
"""

import asyncio
import logging
import traceback
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from app.config import settings
from app.jobs.errors import ConflictError, NotFoundError, TransientExecutionError
from app.jobs.gate import ConcurrencyGate
from app.jobs.ingest import ResultIngestor
from app.jobs.models import Job, JobStatus, utcnow
from app.jobs.retry import RetryPolicy
from app.jobs.store import JobStore
from app.jobs.worker_client import RecognitionWorkerClient
from app.models.base import ModelSpec
from app.models.registry import ModelRegistry, registry as default_registry
from app.subjects.repository import Subject, SubjectRepository

logger = logging.getLogger(__name__)


class _Superseded(Exception):
    """The job left this execution's attempt (cancelled or restarted elsewhere)."""


@dataclass
class ExecutionOutcome:
    job_id: str
    status: str  # "started" or "queued"
    message: str
    override: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "message": self.message,
            "override": self.override,
        }


class ExecutionCoordinator:

    def __init__(
        self,
        store: JobStore,
        subjects: SubjectRepository,
        worker: RecognitionWorkerClient,
        gate: Optional[ConcurrencyGate] = None,
        retry_policy: Optional[RetryPolicy] = None,
        ingestor: Optional[ResultIngestor] = None,
        registry: Optional[ModelRegistry] = None,
        default_timeout: Optional[float] = None,
    ):
        self.store = store
        self.subjects = subjects
        self.worker = worker
        self.gate = gate or ConcurrencyGate()
        self.retry_policy = retry_policy or RetryPolicy()
        self.ingestor = ingestor or ResultIngestor(subjects)
        self.registry = registry or default_registry
        self.default_timeout = default_timeout or settings.worker_timeout_seconds
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def execute(
        self,
        job_id: str,
        tenant_id: str,
        force: bool = False,
        worker_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionOutcome:
        """Start a job now, or queue it when the tenant is at its limit.

        ``force`` bypasses the concurrency gate and the retry wait. Callers
        are expected to have checked executability (see JobService).
        """
        if job_id in self._tasks:
            raise ConflictError("Job is already executing", job_id=job_id)
        await self.store.get(job_id, tenant_id)

        gate_bypassed = force and self.gate.in_flight(tenant_id) >= self.gate.max_concurrent_jobs
        admitted = await self.gate.try_acquire(tenant_id, job_id, override=force)
        if not admitted:
            await self._leave_queued(job_id, tenant_id)
            in_flight = self.gate.in_flight(tenant_id)
            return ExecutionOutcome(
                job_id=job_id,
                status="queued",
                message=f"Job queued. {in_flight} jobs in flight for this tenant.",
            )

        worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        session_id = f"session-{uuid.uuid4().hex}"

        def _start(job: Job) -> None:
            if force:
                job.grant_extra_attempt()
                job.add_log(
                    "override",
                    "Execution forced by operator",
                    "warning",
                    {"gate_bypassed": gate_bypassed},
                )
            job.start(worker_id=worker_id, session_id=session_id)

        try:
            job = await self.store.mutate(job_id, tenant_id, _start)
        except BaseException:
            self.gate.release(tenant_id, job_id)
            raise

        logger.info(
            "Job started",
            extra={
                "job_id": job_id,
                "tenant_id": tenant_id,
                "attempt": job.attempt_count,
                "worker_id": worker_id,
                "override": force,
            },
        )

        task = asyncio.create_task(self._run(job, timeout or self.default_timeout))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._finished(tenant_id, job_id))

        return ExecutionOutcome(
            job_id=job_id,
            status="started",
            message="Job started for immediate execution",
            override=force,
        )

    async def _leave_queued(self, job_id: str, tenant_id: str) -> None:
        def _enqueue(job: Job) -> None:
            if job.status == JobStatus.PENDING:
                job.enqueue()

        await self.store.mutate(job_id, tenant_id, _enqueue)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def build_request(job: Job, subject: Subject, spec: ModelSpec) -> Dict[str, Any]:
        model_config = spec.default_config()
        model_config.update(job.model_options)
        return {
            "subjectRef": subject.id,
            "fileRef": subject.file_ref,
            "mimeType": subject.mime_type,
            "modelConfig": model_config,
            "processingParams": dict(job.processing_params),
            "jobId": job.id,
        }

    async def _transition(self, job: Job, fn: Callable[[Job], None]) -> Job:
        session_id = job.session_id

        def _guarded(current: Job) -> None:
            if current.status != JobStatus.PROCESSING or current.session_id != session_id:
                raise _Superseded(current.status.value)
            fn(current)

        return await self.store.mutate(job.id, job.tenant_id, _guarded)

    async def _run(self, job: Job, timeout: float) -> None:
        try:
            await self._process(job, timeout)
        except asyncio.CancelledError:
            logger.warning(
                "Job execution aborted",
                extra={"job_id": job.id, "tenant_id": job.tenant_id},
            )
            raise
        except _Superseded as e:
            logger.info(
                "Job left processing during execution; result discarded",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "status": str(e)},
            )
        except Exception as e:
            await self._record_failure(job, e)

    def _finished(self, tenant_id: str, job_id: str) -> None:
        # runs even when the task was cancelled before its first step
        self._tasks.pop(job_id, None)
        self.gate.release(tenant_id, job_id)

    async def _process(self, job: Job, timeout: float) -> None:
        spec = self.registry.get(job.model_type)
        subject = await self.subjects.get_by_id(job.subject_id, job.tenant_id)
        payload = self.build_request(job, subject, spec)

        job = await self._transition(
            job,
            lambda j: j.update_progress(10, "dispatched", {"endpoint": spec.endpoint, "timeout": timeout}),
        )
        raw = await self.worker.recognize(spec.endpoint, payload, timeout)

        job = await self._transition(job, lambda j: j.update_progress(90, "ingesting"))
        results = self.ingestor.normalize(raw, job)
        await self.ingestor.publish(job, results)

        job = await self._transition(job, lambda j: j.complete(results))
        logger.info(
            "Job completed",
            extra={
                "job_id": job.id,
                "tenant_id": job.tenant_id,
                "attempt": job.attempt_count,
                "processing_time_seconds": job.processing_time_seconds,
                "detections": results.statistics.count,
            },
        )

    async def _record_failure(self, job: Job, error: Exception) -> None:
        if isinstance(error, TransientExecutionError):
            cause = error.cause
            message = error.message
            detail = error.detail
        elif isinstance(error, NotFoundError):
            cause = "not_found"
            message = error.message
            detail = None
        else:
            cause = "internal"
            message = f"{type(error).__name__}: {error}"
            detail = traceback.format_exc()

        def _fail(current: Job) -> None:
            now = utcnow()
            current.fail(message, detail=detail, cause=cause, now=now)
            self.retry_policy.apply(current, now=now)

        try:
            failed = await self._transition(job, _fail)
        except _Superseded:
            return
        except Exception:
            logger.exception(
                "Could not record job failure",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "error": message},
            )
            return

        if failed.is_terminal:
            logger.error(
                "Job failed with no attempts remaining",
                extra={
                    "job_id": job.id,
                    "tenant_id": job.tenant_id,
                    "attempt": failed.attempt_count,
                    "cause": cause,
                    "error": message,
                },
            )
        else:
            logger.warning(
                "Job attempt failed; retry scheduled",
                extra={
                    "job_id": job.id,
                    "tenant_id": job.tenant_id,
                    "attempt": failed.attempt_count,
                    "cause": cause,
                    "error": message,
                    "next_retry_at": failed.next_retry_at.isoformat() if failed.next_retry_at else None,
                },
            )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def is_running(self, job_id: str) -> bool:
        return job_id in self._tasks

    def running_count(self) -> int:
        return len(self._tasks)

    def abort(self, job_id: str) -> bool:
        """Cancel the in-flight task for a job, aborting its worker call."""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def drain(self) -> None:
        """Wait for every in-flight execution to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def recover_orphans(self) -> int:
        """Fail jobs left Processing by a previous process so they can be retried."""
        recovered = 0
        for job in await self.store.list_processing():
            if job.id in self._tasks:
                continue

            def _interrupt(current: Job) -> None:
                if current.status != JobStatus.PROCESSING:
                    return
                now = utcnow()
                current.fail("Execution interrupted by service restart", cause="interrupted", now=now)
                self.retry_policy.apply(current, now=now)

            await self.store.mutate(job.id, job.tenant_id, _interrupt)
            recovered += 1
            logger.warning(
                "Recovered orphaned job",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "attempt": job.attempt_count},
            )
        return recovered
