"""Job lifecycle error taxonomy."""

from datetime import datetime, timezone
from typing import Optional


class JobError(Exception):
    """Base class. Every error carries the job id (when known) and a timestamp."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "job_id": self.job_id,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(JobError):
    """Job creation rejected; nothing was persisted."""


class NotFoundError(JobError):
    """Referenced job or subject does not exist for the tenant."""


class ConflictError(JobError):
    """Operation not allowed in the job's current state."""


class StaleJobError(ConflictError):
    """Optimistic version check failed; the record changed since it was read."""


class TerminalExecutionError(ConflictError):
    """Attempts are exhausted; only a forced execute restarts the job."""


class TransientExecutionError(JobError):
    """Worker call failed in a way that may succeed on retry.

    cause is one of: timeout, http_status, network, invalid_response.
    """

    def __init__(
        self,
        message: str,
        cause: str,
        job_id: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message, job_id=job_id)
        self.cause = cause
        self.status_code = status_code
        self.detail = detail
