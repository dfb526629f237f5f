"""Per-tenant concurrency gate for in-flight recognition jobs."""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, Optional, Set

from app.config import settings
from app.jobs.errors import ConflictError

logger = logging.getLogger(__name__)


class ConcurrencyGate:
    """Bounds the number of jobs a tenant has in flight.

    Admission is check-and-increment under one lock, so two concurrent
    ``execute`` calls can never both take the last slot. Slots are keyed by
    job id, so one job can hold at most one slot; releasing an unknown job is
    a no-op.
    """

    def __init__(self, max_concurrent_jobs: Optional[int] = None):
        self.max_concurrent_jobs = (
            settings.max_concurrent_jobs if max_concurrent_jobs is None else max_concurrent_jobs
        )
        self._lock = asyncio.Lock()
        self._in_flight: Dict[str, Set[str]] = defaultdict(set)

    async def try_acquire(self, tenant_id: str, job_id: str, override: bool = False) -> bool:
        async with self._lock:
            slots = self._in_flight[tenant_id]
            if job_id in slots:
                raise ConflictError("Job already holds an execution slot", job_id=job_id)
            if len(slots) >= self.max_concurrent_jobs and not override:
                logger.info(
                    "Concurrency gate denied job",
                    extra={
                        "tenant_id": tenant_id,
                        "job_id": job_id,
                        "in_flight": len(slots),
                        "limit": self.max_concurrent_jobs,
                    },
                )
                return False
            if override and len(slots) >= self.max_concurrent_jobs:
                logger.warning(
                    "Concurrency gate bypassed by operator override",
                    extra={
                        "tenant_id": tenant_id,
                        "job_id": job_id,
                        "in_flight": len(slots),
                        "limit": self.max_concurrent_jobs,
                        "override": True,
                    },
                )
            slots.add(job_id)
            return True

    def release(self, tenant_id: str, job_id: str) -> None:
        # no await between read and write, so this is atomic on the event loop
        slots = self._in_flight.get(tenant_id)
        if slots is None:
            return
        slots.discard(job_id)
        if not slots:
            del self._in_flight[tenant_id]

    def in_flight(self, tenant_id: str) -> int:
        return len(self._in_flight.get(tenant_id, ()))

    def snapshot(self) -> Dict[str, int]:
        return {tenant: len(slots) for tenant, slots in self._in_flight.items()}
