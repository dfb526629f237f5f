"""Job statistics and reports: read-only aggregation over stored jobs."""

from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.jobs.models import Job, JobStatus, utcnow


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def compute_statistics(jobs: List[Job]) -> Dict[str, Any]:
    """Counts by status and model, average processing time per model, success rate."""
    total = len(jobs)
    by_status = Counter(j.status.value for j in jobs)
    by_model = Counter(j.model_type.value for j in jobs)

    times: Dict[str, List[int]] = defaultdict(list)
    for job in jobs:
        if job.status == JobStatus.COMPLETED and job.processing_time_seconds is not None:
            times[job.model_type.value].append(job.processing_time_seconds)

    return {
        "total": total,
        "by_status": {status.value: by_status.get(status.value, 0) for status in JobStatus},
        "by_model": dict(by_model),
        "avg_processing_time": {
            model: round(sum(values) / len(values), 2) for model, values in times.items()
        },
        "success_rate": _percent(by_status.get(JobStatus.COMPLETED.value, 0), total),
    }


def _avg_processing_time(jobs: List[Job]) -> int:
    timed = [j.processing_time_seconds for j in jobs if j.processing_time_seconds]
    if not timed:
        return 0
    return round(sum(timed) / len(timed))


def _performance(jobs: List[Job]) -> Dict[str, float]:
    total = len(jobs)
    completed = sum(1 for j in jobs if j.status == JobStatus.COMPLETED)
    failed = sum(1 for j in jobs if j.status == JobStatus.FAILED)
    return {
        "success_rate": _percent(completed, total),
        "failure_rate": _percent(failed, total),
        "avg_attempts": (sum(j.attempt_count for j in jobs) / total) if total else 0.0,
    }


def build_report(
    jobs: List[Job],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    include_results: bool = False,
) -> Dict[str, Any]:
    """Summary report over an already-filtered job list."""
    ordered = sorted(jobs, key=lambda j: j.created_at)
    period_start = start_date or (ordered[0].created_at if ordered else None)
    period_end = end_date or utcnow()

    report: Dict[str, Any] = {
        "period": {
            "start": period_start.isoformat() if period_start else None,
            "end": period_end.isoformat(),
        },
        "summary": {
            "total_jobs": len(ordered),
            "completed_jobs": sum(1 for j in ordered if j.status == JobStatus.COMPLETED),
            "failed_jobs": sum(1 for j in ordered if j.status == JobStatus.FAILED),
            "avg_processing_time": _avg_processing_time(ordered),
            "total_processing_time": sum(j.processing_time_seconds or 0 for j in ordered),
        },
        "by_model": dict(Counter(j.model_type.value for j in ordered)),
        "by_status": dict(Counter(j.status.value for j in ordered)),
        "performance": _performance(ordered),
    }
    if include_results:
        report["jobs"] = [j.export_for_report() for j in ordered]
    return report
