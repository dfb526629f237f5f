"""Retry policy: exponential backoff over a job's attempt history."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.config import settings
from app.jobs.models import Job, JobStatus, utcnow


@dataclass
class RetryDecision:
    retry: bool
    next_retry_at: Optional[datetime] = None
    delay_seconds: float = 0.0


class RetryPolicy:
    """Decides what happens to a job right after a failed attempt.

    Attempts are counted when they start, so after a failure ``attempt_count``
    is the number of the attempt that just failed. Delay for attempt n is
    ``base * 2^(n-1)`` capped at ``max_delay_seconds``.
    """

    def __init__(
        self,
        base_delay_seconds: Optional[float] = None,
        max_delay_seconds: Optional[float] = None,
    ):
        self.base_delay_seconds = (
            settings.retry_base_delay_seconds if base_delay_seconds is None else base_delay_seconds
        )
        self.max_delay_seconds = (
            settings.retry_max_delay_seconds if max_delay_seconds is None else max_delay_seconds
        )

    def backoff(self, attempt: int) -> float:
        exponent = max(0, attempt - 1)
        return min(self.base_delay_seconds * (2 ** exponent), self.max_delay_seconds)

    def decide(self, job: Job, now: Optional[datetime] = None) -> RetryDecision:
        now = now or utcnow()
        if job.attempt_count < job.max_attempts:
            delay = self.backoff(job.attempt_count)
            return RetryDecision(True, now + timedelta(seconds=delay), delay)
        return RetryDecision(False)

    def apply(self, job: Job, now: Optional[datetime] = None) -> RetryDecision:
        """Stamp the decision onto a job that was just failed."""
        if job.status != JobStatus.FAILED:
            raise ValueError(f"Retry policy applies to failed jobs, got {job.status.value}")
        now = now or utcnow()
        decision = self.decide(job, now)
        if decision.retry:
            job.next_retry_at = decision.next_retry_at
            job.add_log(
                "retry_scheduled",
                f"Next attempt scheduled for {decision.next_retry_at.isoformat()}",
                "warning",
                {
                    "backoff_seconds": decision.delay_seconds,
                    "attempt": job.attempt_count,
                    "max_attempts": job.max_attempts,
                },
                now=now,
            )
        else:
            job.next_retry_at = None
            job.completed_at = now
            job.add_log(
                "failed",
                "Processing failed - maximum attempts exhausted",
                "error",
                {"final_attempt": job.attempt_count, "max_attempts": job.max_attempts},
                now=now,
            )
        return decision
