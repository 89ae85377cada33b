from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

class JobStatus(str, Enum):
    CREATED = "created"
    QUEUED = "queued"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    SNAPSHOT_CREATED = "snapshot_created"
    DELTA_CALCULATED = "delta_calculated"
    INGESTING = "ingesting"
    INGESTION_FAILED = "ingestion_failed"
    EMBEDDINGS_CREATED = "embeddings_created"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

class JobRecord(BaseModel):
    """One pipeline execution attempt, as stored in the jobs table.

    ``status`` is kept as the raw string reported by the pipeline so that
    values outside :class:`JobStatus` survive and can be classified as unknown.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    workspace_id: str
    triggered_by: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    status: Optional[str] = None
    error_message: Optional[str] = None
    total_time_taken: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    provisional: bool = False

    @field_validator("id", "workspace_id", mode="before")
    def coerce_identifier(cls, v):
        return str(v) if v is not None else v

    @field_validator("status", mode="before")
    def coerce_status(cls, v):
        if isinstance(v, JobStatus):
            return v.value
        return v

    @field_validator("meta", mode="before")
    def default_meta(cls, v):
        return v or {}

    @field_validator("started_at", "finished_at")
    def normalise_timestamps(cls, v):
        return _as_utc(v)

    @classmethod
    def provisional_run(cls, run_id: str, workspace_id: str, triggered_by: Optional[str] = None) -> "JobRecord":
        """Local placeholder shown until the pipeline writes its own row."""
        return cls(
            id=run_id,
            workspace_id=workspace_id,
            triggered_by=triggered_by,
            started_at=utcnow(),
            status=JobStatus.CREATED,
            provisional=True,
        )

class FileRecord(BaseModel):
    """Uploaded source document. Only read here to build the trigger payload."""
    model_config = ConfigDict(extra="ignore")

    id: str
    workspace_id: str
    filename: str
    size_bytes: int = 0
    mime_type: Optional[str] = None
    storage_path: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    @field_validator("id", "workspace_id", mode="before")
    def coerce_identifier(cls, v):
        return str(v) if v is not None else v
