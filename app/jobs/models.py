"""Job record data model and its state machine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid

from app.config import settings
from app.jobs.errors import ConflictError, TerminalExecutionError
from app.models.base import ModelType

MIN_PRIORITY = 1
MAX_PRIORITY = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "info"
    stage: str
    message: str
    data: Optional[Dict[str, Any]] = None


class ErrorEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    message: str
    attempt_number: int
    cause: str = "internal"
    detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Canonical recognition results
# ---------------------------------------------------------------------------

class BoundingBox(BaseModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class Detection(BaseModel):
    id: Optional[str] = None
    type: str = "unknown"
    category: str = "unknown"
    confidence: float = 0.0
    bounding_box: Optional[BoundingBox] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class TextRegion(BaseModel):
    text: str
    confidence: float = 0.0
    position: Optional[Dict[str, float]] = None
    category: Optional[str] = None


class LayerAnalysis(BaseModel):
    layer: str
    object_count: int = 0
    recognized_types: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class Dimension(BaseModel):
    type: str = "linear"
    value: float = 0.0
    unit: str = ""
    confidence: float = 0.0
    formatted_text: Optional[str] = None


class ComplianceFinding(BaseModel):
    rule: str
    status: str = "not_applicable"
    message: str = ""
    confidence: float = 0.0
    references: List[str] = Field(default_factory=list)


class ResultStatistics(BaseModel):
    count: int = 0
    confidence_min: float = 0.0
    confidence_avg: float = 0.0
    confidence_max: float = 0.0
    processing_time_ms: float = 0.0
    model_version: str = ""


class RecognitionResults(BaseModel):
    detections: List[Detection] = Field(default_factory=list)
    extracted_text: List[TextRegion] = Field(default_factory=list)
    layers: List[LayerAnalysis] = Field(default_factory=list)
    dimensions: List[Dimension] = Field(default_factory=list)
    compliance: List[ComplianceFinding] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    generated_files: List[Dict[str, Any]] = Field(default_factory=list)
    statistics: ResultStatistics = Field(default_factory=ResultStatistics)


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

class Job(BaseModel):
    """Tracks the lifecycle of one recognition request against a subject.

    State transitions live here as methods so every writer goes through the
    same rules; persistence and retry timing are handled by the store and the
    retry policy.
    """
    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    name: str
    description: Optional[str] = None
    subject_id: str
    initiated_by: Optional[str] = None
    model_type: ModelType
    priority: int = Field(default=3, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    status: JobStatus = JobStatus.PENDING

    model_options: Dict[str, Any] = Field(default_factory=dict)
    processing_params: Dict[str, Any] = Field(default_factory=dict)

    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_seconds: Optional[int] = None

    progress: int = 0
    current_stage: Optional[str] = None
    processing_log: List[LogEntry] = Field(default_factory=list)

    attempt_count: int = 0
    max_attempts: int = Field(default_factory=lambda: settings.default_max_attempts, ge=1)
    next_retry_at: Optional[datetime] = None
    error_history: List[ErrorEntry] = Field(default_factory=list)

    worker_id: Optional[str] = None
    session_id: Optional[str] = None

    results: Optional[RecognitionResults] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    # -- derived state ------------------------------------------------------

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)

    @property
    def is_processing(self) -> bool:
        return self.status == JobStatus.PROCESSING

    @property
    def is_terminal(self) -> bool:
        if self.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            return True
        return self.status == JobStatus.FAILED and self.attempts_remaining == 0

    def can_retry_at(self, now: datetime) -> bool:
        return (
            self.status == JobStatus.FAILED
            and self.attempt_count < self.max_attempts
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )

    def can_execute_at(self, now: datetime) -> bool:
        if self.status in (JobStatus.PENDING, JobStatus.QUEUED):
            return self.scheduled_for is None or self.scheduled_for <= now
        return self.can_retry_at(now)

    @property
    def can_retry(self) -> bool:
        return self.can_retry_at(utcnow())

    @property
    def can_execute(self) -> bool:
        return self.can_execute_at(utcnow())

    @property
    def duration(self) -> Optional[int]:
        if not self.started_at or not self.completed_at:
            return None
        return round((self.completed_at - self.started_at).total_seconds())

    # -- logs ---------------------------------------------------------------

    def add_log(
        self,
        stage: str,
        message: str,
        level: str = "info",
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.processing_log.append(
            LogEntry(timestamp=now or utcnow(), level=level, stage=stage, message=message, data=data)
        )
        overflow = len(self.processing_log) - settings.processing_log_retention
        if overflow > 0:
            del self.processing_log[:overflow]

    def recent_log(self, limit: Optional[int] = None) -> List[LogEntry]:
        limit = settings.processing_log_read_limit if limit is None else limit
        if limit <= 0:
            return []
        return self.processing_log[-limit:]

    def add_error(
        self,
        message: str,
        detail: Optional[str] = None,
        cause: str = "internal",
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        self.error_history.append(
            ErrorEntry(
                timestamp=now,
                message=message,
                attempt_number=self.attempt_count,
                cause=cause,
                detail=detail,
            )
        )
        overflow = len(self.error_history) - settings.error_history_retention
        if overflow > 0:
            del self.error_history[:overflow]
        self.add_log("error", message, "error", {"cause": cause, "attempt": self.attempt_count}, now=now)

    # -- transitions --------------------------------------------------------

    def enqueue(self, now: Optional[datetime] = None) -> None:
        if self.status not in (JobStatus.PENDING, JobStatus.QUEUED, JobStatus.FAILED) or self.is_terminal:
            raise ConflictError(f"Job cannot be queued from status {self.status.value}", job_id=self.id)
        self.status = JobStatus.QUEUED
        self.current_stage = "queued"
        self.add_log("queue", "Job added to the processing queue", now=now)

    def start(
        self,
        worker_id: Optional[str] = None,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        if self.status not in (JobStatus.PENDING, JobStatus.QUEUED, JobStatus.FAILED):
            raise ConflictError(f"Job cannot start from status {self.status.value}", job_id=self.id)
        if self.attempt_count >= self.max_attempts:
            raise TerminalExecutionError(
                f"Job exhausted its {self.max_attempts} attempts", job_id=self.id
            )
        now = now or utcnow()
        self.attempt_count += 1
        self.status = JobStatus.PROCESSING
        self.started_at = now
        self.completed_at = None
        self.processing_time_seconds = None
        self.next_retry_at = None
        self.progress = 0
        self.current_stage = "started"
        self.worker_id = worker_id
        self.session_id = session_id
        self.add_log(
            "start",
            f"Processing started (attempt {self.attempt_count}/{self.max_attempts})",
            data={"worker_id": worker_id, "session_id": session_id},
            now=now,
        )

    def update_progress(
        self,
        progress: int,
        stage: str,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        if self.status != JobStatus.PROCESSING:
            raise ConflictError("Progress can only be reported while processing", job_id=self.id)
        # progress never moves backwards within an attempt
        self.progress = max(self.progress, min(100, max(0, int(progress))))
        self.current_stage = stage
        self.add_log("progress", f"Progress: {self.progress}% - {stage}", data=details, now=now)

    def complete(self, results: RecognitionResults, now: Optional[datetime] = None) -> None:
        if self.status != JobStatus.PROCESSING:
            raise ConflictError(f"Job cannot complete from status {self.status.value}", job_id=self.id)
        now = now or utcnow()
        self.status = JobStatus.COMPLETED
        self.completed_at = now
        self.progress = 100
        self.current_stage = "completed"
        self.results = results
        if self.started_at:
            self.processing_time_seconds = round((now - self.started_at).total_seconds())
        self.add_log(
            "complete",
            "Processing completed",
            data={
                "processing_time_seconds": self.processing_time_seconds,
                "objects_detected": len(results.detections),
                "text_extracted": len(results.extracted_text),
            },
            now=now,
        )

    def fail(
        self,
        message: str,
        detail: Optional[str] = None,
        cause: str = "internal",
        now: Optional[datetime] = None,
    ) -> None:
        """Record a failed attempt. Retry timing is decided by RetryPolicy."""
        if self.status != JobStatus.PROCESSING:
            raise ConflictError(f"Job cannot fail from status {self.status.value}", job_id=self.id)
        self.status = JobStatus.FAILED
        self.current_stage = "failed"
        self.add_error(message, detail=detail, cause=cause, now=now)

    def cancel(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        if self.is_terminal:
            raise ConflictError(
                f"Job is already terminal ({self.status.value}) and cannot be cancelled",
                job_id=self.id,
            )
        now = now or utcnow()
        self.status = JobStatus.CANCELLED
        self.completed_at = now
        self.next_retry_at = None
        self.current_stage = "cancelled"
        suffix = f": {reason}" if reason else ""
        self.add_log("cancel", f"Processing cancelled{suffix}", "warning", {"reason": reason}, now=now)

    def grant_extra_attempt(self, now: Optional[datetime] = None) -> None:
        """Forced restart of an exhausted job: allow exactly one more attempt."""
        if self.attempt_count < self.max_attempts:
            return
        self.max_attempts = self.attempt_count + 1
        self.completed_at = None
        self.add_log(
            "force",
            "Forced restart granted one additional attempt",
            "warning",
            {"max_attempts": self.max_attempts},
            now=now,
        )

    def set_max_attempts(self, max_attempts: int, now: Optional[datetime] = None) -> None:
        """Change the attempt budget. A Failed job's completion stamp follows is_terminal."""
        self.max_attempts = max_attempts
        if self.status != JobStatus.FAILED:
            return
        if self.is_terminal:
            self.next_retry_at = None
            if self.completed_at is None:
                self.completed_at = now or utcnow()
        else:
            self.completed_at = None

    # -- views --------------------------------------------------------------

    def status_summary(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "progress": self.progress,
            "stage": self.current_stage or "waiting",
            "can_retry": self.can_retry,
            "duration": self.duration,
            "attempts": self.attempt_count,
            "max_attempts": self.max_attempts,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "last_error": self.error_history[-1].message if self.error_history else None,
        }

    def to_response(self, log_limit: Optional[int] = None) -> Dict[str, Any]:
        """API view with the processing log capped to its most recent entries."""
        data = self.model_dump(mode="json", exclude={"processing_log"})
        data["processing_log"] = [e.model_dump(mode="json") for e in self.recent_log(log_limit)]
        data["can_retry"] = self.can_retry
        data["can_execute"] = self.can_execute
        return data

    def export_for_report(self) -> Dict[str, Any]:
        return self.model_dump(
            mode="json",
            include={
                "id", "name", "model_type", "status", "priority", "progress",
                "current_stage", "created_at", "started_at", "completed_at",
                "processing_time_seconds", "attempt_count", "max_attempts",
                "results", "model_options", "processing_params",
            },
        )
