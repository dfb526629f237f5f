"""Job store interface and in-process implementation."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from app.jobs.errors import NotFoundError, StaleJobError
from app.jobs.models import Job, JobStatus, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def enum_value(item) -> str:
    """Plain value of an Enum member or string filter."""
    return item.value if isinstance(item, Enum) else str(item)


@dataclass
class JobQuery:
    """Search filters for tenant-scoped job listing."""
    status: Optional[JobStatus] = None
    statuses: Optional[List[JobStatus]] = None
    model_type: Optional[str] = None
    model_types: Optional[List[str]] = None
    priority: Optional[int] = None
    subject_id: Optional[str] = None
    initiated_by: Optional[str] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    can_execute: Optional[bool] = None
    can_retry: Optional[bool] = None
    page: int = 1
    limit: int = 20

    def __post_init__(self):
        self.page = max(1, self.page)
        self.limit = max(1, min(self.limit, MAX_PAGE_SIZE))

    def matches(self, job: Job, now: datetime) -> bool:
        if self.status is not None and job.status != self.status:
            return False
        if self.statuses and job.status not in self.statuses:
            return False
        if self.model_type is not None and job.model_type.value != enum_value(self.model_type):
            return False
        if self.model_types and job.model_type.value not in [enum_value(m) for m in self.model_types]:
            return False
        if self.priority is not None and job.priority != self.priority:
            return False
        if self.subject_id is not None and job.subject_id != self.subject_id:
            return False
        if self.initiated_by is not None and job.initiated_by != self.initiated_by:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = f"{job.name} {job.description or ''}".lower()
            if needle not in haystack:
                return False
        if self.created_from is not None and job.created_at < self.created_from:
            return False
        if self.created_to is not None and job.created_at > self.created_to:
            return False
        if self.can_execute is not None and job.can_execute_at(now) != self.can_execute:
            return False
        if self.can_retry is not None and job.can_retry_at(now) != self.can_retry:
            return False
        return True


@dataclass
class JobPage:
    data: List[Job] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20


def queue_order(job: Job):
    """Priority ascending, then FIFO within a priority band. id breaks exact ties."""
    return (job.priority, job.created_at, job.id)


class JobStore(ABC):
    """Abstract durable job storage. Every read and write is tenant-scoped,
    except the scheduler-facing ``eligible`` and ``list_processing`` queries."""

    @abstractmethod
    async def create(self, job: Job) -> Job:
        ...

    @abstractmethod
    async def get(self, job_id: str, tenant_id: str) -> Job:
        """Return the job or raise NotFoundError."""
        ...

    @abstractmethod
    async def save(self, job: Job) -> Job:
        """Persist a job read earlier. Raises StaleJobError if its version moved."""
        ...

    @abstractmethod
    async def search(self, tenant_id: str, query: JobQuery, now: Optional[datetime] = None) -> JobPage:
        ...

    @abstractmethod
    async def list_jobs(self, tenant_id: str, query: Optional[JobQuery] = None) -> List[Job]:
        """Unpaginated tenant listing used for statistics and reports."""
        ...

    @abstractmethod
    async def eligible(
        self,
        limit: int,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Job]:
        """Jobs the scheduler may start right now, in queue order."""
        ...

    @abstractmethod
    async def list_processing(self) -> List[Job]:
        ...

    async def mutate(
        self,
        job_id: str,
        tenant_id: str,
        fn: Callable[[Job], None],
        max_tries: int = 3,
    ) -> Job:
        """Read-modify-write one job, re-reading on version conflicts.

        Errors raised by ``fn`` (e.g. ConflictError from a transition) propagate
        and nothing is written.
        """
        for attempt in range(1, max_tries + 1):
            job = await self.get(job_id, tenant_id)
            fn(job)
            try:
                return await self.save(job)
            except StaleJobError:
                if attempt == max_tries:
                    raise
                logger.debug(
                    "Stale job write, retrying",
                    extra={"job_id": job_id, "tenant_id": tenant_id, "try": attempt},
                )
        raise StaleJobError("Job write did not converge", job_id=job_id)


class InMemoryJobStore(JobStore):
    """Process-local store. Holds copies so callers never share mutable records."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> Job:
        async with self._lock:
            job.version = 1
            job.updated_at = utcnow()
            self._jobs[job.id] = job.model_copy(deep=True)
        return job.model_copy(deep=True)

    async def get(self, job_id: str, tenant_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None or job.tenant_id != tenant_id:
            raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
        return job.model_copy(deep=True)

    async def save(self, job: Job) -> Job:
        async with self._lock:
            current = self._jobs.get(job.id)
            if current is None or current.tenant_id != job.tenant_id:
                raise NotFoundError(f"Job {job.id} not found", job_id=job.id)
            if current.version != job.version:
                raise StaleJobError(
                    f"Job {job.id} changed (version {current.version}, write based on {job.version})",
                    job_id=job.id,
                )
            job.version += 1
            job.updated_at = utcnow()
            self._jobs[job.id] = job.model_copy(deep=True)
        return job.model_copy(deep=True)

    def _tenant_jobs(self, tenant_id: str) -> List[Job]:
        return [j for j in self._jobs.values() if j.tenant_id == tenant_id]

    async def search(self, tenant_id: str, query: JobQuery, now: Optional[datetime] = None) -> JobPage:
        now = now or utcnow()
        matched = sorted(
            (j for j in self._tenant_jobs(tenant_id) if query.matches(j, now)),
            key=queue_order,
        )
        start = (query.page - 1) * query.limit
        page = matched[start:start + query.limit]
        return JobPage(
            data=[j.model_copy(deep=True) for j in page],
            total=len(matched),
            page=query.page,
            limit=query.limit,
        )

    async def list_jobs(self, tenant_id: str, query: Optional[JobQuery] = None) -> List[Job]:
        now = utcnow()
        jobs = [j for j in self._tenant_jobs(tenant_id) if query is None or query.matches(j, now)]
        return [j.model_copy(deep=True) for j in sorted(jobs, key=lambda j: j.created_at)]

    async def eligible(
        self,
        limit: int,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Job]:
        now = now or utcnow()
        candidates = [
            j for j in self._jobs.values()
            if (tenant_id is None or j.tenant_id == tenant_id) and j.can_execute_at(now)
        ]
        candidates.sort(key=queue_order)
        return [j.model_copy(deep=True) for j in candidates[:limit]]

    async def list_processing(self) -> List[Job]:
        return [
            j.model_copy(deep=True) for j in self._jobs.values()
            if j.status == JobStatus.PROCESSING
        ]
