"""Domain models for remote processing jobs."""

from dataclasses import dataclass
from enum import Enum


class JobStatus(str, Enum):
    """Job status as reported by the processing service."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


class OrchestrationState(str, Enum):
    """Client-side state of the upload/process flow."""

    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in {OrchestrationState.UPLOADING, OrchestrationState.PROCESSING}


@dataclass(frozen=True)
class Job:
    """Represents the job currently tracked by the session."""

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    message: str | None = None
