"""Job store backed by a Supabase (PostgREST) table.

The Supabase client is synchronous, so every request runs in a worker thread.
Optimistic versioning is enforced server-side: an update only matches the row
when its ``version`` column still equals the version the job was read at.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.config import settings
from app.jobs.errors import NotFoundError, StaleJobError
from app.jobs.models import Job, JobStatus, utcnow
from app.jobs.store import JobPage, JobQuery, JobStore, enum_value, queue_order

logger = logging.getLogger(__name__)


class SupabaseJobStore(JobStore):

    def __init__(self, client=None, table: Optional[str] = None):
        self._client = client
        self._table = table or settings.jobs_table

    def _supabase(self):
        if self._client is None:
            from app.db.supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    def _query(self):
        return self._supabase().table(self._table)

    @staticmethod
    async def _execute(request):
        return await asyncio.to_thread(request.execute)

    @staticmethod
    def _to_row(job: Job) -> Dict[str, Any]:
        return job.model_dump(mode="json")

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Job:
        return Job.model_validate(row)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, job: Job) -> Job:
        job.version = 1
        job.updated_at = utcnow()
        response = await self._execute(self._query().insert(self._to_row(job)))
        if response.data:
            return self._from_row(response.data[0])
        return job

    async def get(self, job_id: str, tenant_id: str) -> Job:
        response = await self._execute(
            self._query().select("*").eq("id", job_id).eq("tenant_id", tenant_id).limit(1)
        )
        if not response.data:
            raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
        return self._from_row(response.data[0])

    async def save(self, job: Job) -> Job:
        read_version = job.version
        updated = job.model_copy(deep=True)
        updated.version = read_version + 1
        updated.updated_at = utcnow()

        row = self._to_row(updated)
        row.pop("id", None)
        row.pop("tenant_id", None)
        response = await self._execute(
            self._query()
            .update(row)
            .eq("id", job.id)
            .eq("tenant_id", job.tenant_id)
            .eq("version", read_version)
        )
        if response.data:
            return self._from_row(response.data[0])

        # nothing matched: either the row is gone or its version moved
        current = await self.get(job.id, job.tenant_id)
        logger.debug(
            "Versioned update matched no row",
            extra={"job_id": job.id, "read_version": read_version, "current_version": current.version},
        )
        raise StaleJobError(
            f"Job {job.id} changed (version {current.version}, write based on {read_version})",
            job_id=job.id,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _needs_local_filter(query: JobQuery) -> bool:
        # can_execute/can_retry compare two columns, which PostgREST filters cannot express
        return query.can_execute is not None or query.can_retry is not None

    def _filtered(self, request, query: JobQuery):
        if query.status is not None:
            request = request.eq("status", enum_value(query.status))
        if query.statuses:
            request = request.in_("status", [enum_value(s) for s in query.statuses])
        if query.model_type is not None:
            request = request.eq("model_type", enum_value(query.model_type))
        if query.model_types:
            request = request.in_("model_type", [enum_value(m) for m in query.model_types])
        if query.priority is not None:
            request = request.eq("priority", query.priority)
        if query.subject_id is not None:
            request = request.eq("subject_id", query.subject_id)
        if query.initiated_by is not None:
            request = request.eq("initiated_by", query.initiated_by)
        if query.search:
            pattern = f"%{query.search}%"
            request = request.or_(f"name.ilike.{pattern},description.ilike.{pattern}")
        if query.created_from is not None:
            request = request.gte("created_at", query.created_from.isoformat())
        if query.created_to is not None:
            request = request.lte("created_at", query.created_to.isoformat())
        return request

    @staticmethod
    def _ordered(request):
        return request.order("priority").order("created_at").order("id")

    async def search(self, tenant_id: str, query: JobQuery, now: Optional[datetime] = None) -> JobPage:
        now = now or utcnow()
        start = (query.page - 1) * query.limit

        if self._needs_local_filter(query):
            request = self._filtered(self._query().select("*").eq("tenant_id", tenant_id), query)
            response = await self._execute(self._ordered(request))
            jobs = [self._from_row(r) for r in response.data or []]
            matched = sorted((j for j in jobs if query.matches(j, now)), key=queue_order)
            return JobPage(
                data=matched[start:start + query.limit],
                total=len(matched),
                page=query.page,
                limit=query.limit,
            )

        request = self._filtered(
            self._query().select("*", count="exact").eq("tenant_id", tenant_id), query
        )
        response = await self._execute(
            self._ordered(request).range(start, start + query.limit - 1)
        )
        rows = response.data or []
        return JobPage(
            data=[self._from_row(r) for r in rows],
            total=response.count if response.count is not None else len(rows),
            page=query.page,
            limit=query.limit,
        )

    async def list_jobs(self, tenant_id: str, query: Optional[JobQuery] = None) -> List[Job]:
        request = self._query().select("*").eq("tenant_id", tenant_id)
        if query is not None:
            request = self._filtered(request, query)
        response = await self._execute(request.order("created_at"))
        jobs = [self._from_row(r) for r in response.data or []]
        if query is not None and self._needs_local_filter(query):
            now = utcnow()
            jobs = [j for j in jobs if query.matches(j, now)]
        return jobs

    async def eligible(
        self,
        limit: int,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Job]:
        now = now or utcnow()
        # terminal failures carry completed_at, retryable ones do not
        request = self._query().select("*").or_(
            "status.in.(pending,queued),and(status.eq.failed,completed_at.is.null)"
        )
        if tenant_id is not None:
            request = request.eq("tenant_id", tenant_id)
        response = await self._execute(self._ordered(request))
        candidates = [self._from_row(r) for r in response.data or []]
        ready = [j for j in candidates if j.can_execute_at(now)]
        ready.sort(key=queue_order)
        return ready[:limit]

    async def list_processing(self) -> List[Job]:
        response = await self._execute(
            self._query().select("*").eq("status", JobStatus.PROCESSING.value)
        )
        return [self._from_row(r) for r in response.data or []]
