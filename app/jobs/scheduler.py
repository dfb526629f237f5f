"""Scheduler: finds eligible jobs and feeds them to the execution coordinator.

Runs as a background asyncio task. Each pass re-runs the eligibility query
(priority, then creation time), so ordering is the only fairness mechanism:
a steady stream of higher-priority submissions can starve lower-priority
jobs. Submissions wake the loop early instead of waiting for the next poll.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from app.config import settings
from app.jobs.coordinator import ExecutionCoordinator
from app.jobs.errors import JobError
from app.jobs.models import Job
from app.jobs.store import JobStore

logger = logging.getLogger(__name__)


class Scheduler:

    def __init__(
        self,
        store: JobStore,
        coordinator: ExecutionCoordinator,
        poll_interval: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.coordinator = coordinator
        self.poll_interval = (
            settings.scheduler_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.batch_size = settings.scheduler_batch_size if batch_size is None else batch_size
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def get_eligible_jobs(self, limit: int = 10, now: Optional[datetime] = None) -> List[Job]:
        """Read-only: jobs that may start now, highest priority and oldest first."""
        return await self.store.eligible(limit=limit, now=now)

    def wake(self) -> None:
        self._wakeup.set()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run_once(self) -> int:
        """One scheduling pass. Returns how many jobs were started."""
        started = 0
        for job in await self.get_eligible_jobs(limit=self.batch_size):
            if self.coordinator.is_running(job.id):
                continue
            try:
                outcome = await self.coordinator.execute(job.id, job.tenant_id)
            except JobError as e:
                # job changed between the query and admission; next pass re-evaluates
                logger.info(
                    "Skipped eligible job",
                    extra={"job_id": job.id, "tenant_id": job.tenant_id, "reason": e.message},
                )
                continue
            if outcome.status == "started":
                started += 1
        return started

    async def _loop(self) -> None:
        """Poll for eligible jobs until stopped."""
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Scheduler pass failed")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break
            self._wakeup.clear()
