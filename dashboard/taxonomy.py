"""Pipeline status vocabulary: progress, user-facing message and class per status."""
from enum import Enum
from typing import Dict, NamedTuple, Optional, Union

from dashboard.models.job import JobStatus

class StatusClass(str, Enum):
    HAPPY = "happy"
    COMPLETED = "completed"
    TERMINAL_ERROR = "terminal_error"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self is not StatusClass.HAPPY

    @property
    def is_failure(self) -> bool:
        return self in (StatusClass.TERMINAL_ERROR, StatusClass.UNKNOWN)

class StatusInfo(NamedTuple):
    progress: int
    message: str

KNOWN_HAPPY_STATUSES = frozenset({
    JobStatus.CREATED,
    JobStatus.QUEUED,
    JobStatus.VALIDATING,
    JobStatus.SNAPSHOT_CREATED,
    JobStatus.DELTA_CALCULATED,
    JobStatus.INGESTING,
    JobStatus.EMBEDDINGS_CREATED,
    JobStatus.COMPLETED,
})

TERMINAL_ERROR_STATUSES = frozenset({
    JobStatus.VALIDATION_FAILED,
    JobStatus.INGESTION_FAILED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

STATUS_TABLE: Dict[JobStatus, StatusInfo] = {
    JobStatus.CREATED: StatusInfo(0, "Pipeline job created and initializing..."),
    JobStatus.QUEUED: StatusInfo(5, "Pipeline is queued and waiting to start..."),
    JobStatus.VALIDATING: StatusInfo(10, "Validating files and prerequisites..."),
    JobStatus.VALIDATION_FAILED: StatusInfo(0, "Validation failed - please check your files"),
    JobStatus.SNAPSHOT_CREATED: StatusInfo(25, "Just took a snapshot of the job to save us future troubles"),
    JobStatus.DELTA_CALCULATED: StatusInfo(40, "Hang on tight... job delta created successfully!"),
    JobStatus.INGESTING: StatusInfo(60, "Ingesting and processing your documents..."),
    JobStatus.INGESTION_FAILED: StatusInfo(0, "Failed to ingest documents - please try again"),
    JobStatus.EMBEDDINGS_CREATED: StatusInfo(95, "Generated AI embeddings for semantic search"),
    JobStatus.COMPLETED: StatusInfo(100, "Pipeline completed successfully!"),
    JobStatus.FAILED: StatusInfo(0, "Pipeline encountered an error"),
    JobStatus.CANCELLED: StatusInfo(0, "Pipeline was cancelled"),
}

UNKNOWN_STATUS = StatusInfo(0, "Unknown error occurred")

def parse_status(status: Union[str, JobStatus, None]) -> Optional[JobStatus]:
    """Return the matching JobStatus, or None for anything outside the vocabulary."""
    if status is None:
        return None
    try:
        return JobStatus(status)
    except ValueError:
        return None

def lookup(status: Union[str, JobStatus, None]) -> StatusInfo:
    """Progress and message for a status; unrecognised values get the fallback."""
    known = parse_status(status)
    if known is None:
        return UNKNOWN_STATUS
    return STATUS_TABLE[known]

def classify(status: Union[str, JobStatus, None]) -> StatusClass:
    known = parse_status(status)
    if known is JobStatus.COMPLETED:
        return StatusClass.COMPLETED
    if known in KNOWN_HAPPY_STATUSES:
        return StatusClass.HAPPY
    if known in TERMINAL_ERROR_STATUSES:
        return StatusClass.TERMINAL_ERROR
    # Fail closed: never leave a run waiting on a state we do not understand.
    return StatusClass.UNKNOWN

def is_terminal(status: Union[str, JobStatus, None]) -> bool:
    """True once a record with this status must never transition again; null is not terminal."""
    return status is not None and classify(status).is_terminal
