from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from dashboard.models.job import utcnow
from dashboard.models.state import RunState

class TriggerPayload(BaseModel):
    file_ids: List[str] = Field(..., description="Ids of every current file in the workspace.")
    workspace_id: str = Field(..., description="Workspace the run belongs to.")
    trigger_by: Optional[str] = Field(None, description="User id of whoever started the run.")

class Notification(BaseModel):
    title: str
    description: str = ""
    variant: Literal["default", "destructive"] = "default"
    run_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

class RunStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    last_started_at: Optional[datetime] = None

class PipelineSnapshot(BaseModel):
    """Flat, render-ready view of the controller's current RunState."""
    phase: str
    is_running: bool
    run_id: Optional[str] = None
    job_id: Optional[str] = None
    progress_percent: int = 0
    progress_message: str = ""
    current_status: str = ""
    error: Optional[str] = None

    @classmethod
    def from_state(cls, state: RunState) -> "PipelineSnapshot":
        return cls(
            phase=state.phase,
            is_running=state.is_running,
            run_id=getattr(state, "run_id", None),
            job_id=getattr(state, "job_id", None),
            progress_percent=getattr(state, "progress_percent", 0),
            progress_message=getattr(state, "progress_message", ""),
            current_status=getattr(state, "current_status", ""),
            error=getattr(state, "error", None),
        )

class ActivateWorkspaceRequest(BaseModel):
    workspace_id: Optional[str] = Field(None, description="Workspace to activate; resolved from the session when omitted.")
