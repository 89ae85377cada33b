import asyncio
from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict

class _Phase(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def is_running(self) -> bool:
        return False

class Idle(_Phase):
    phase: Literal['idle'] = 'idle'

class Triggering(_Phase):
    phase: Literal['triggering'] = 'triggering'
    run_id: str
    progress_percent: int = 0
    progress_message: str = "Initializing pipeline..."

    @property
    def is_running(self) -> bool:
        return True

class AwaitingUpdates(_Phase):
    """Webhook acknowledged an asynchronous start; progress comes from the change feed."""
    phase: Literal['awaiting_updates'] = 'awaiting_updates'
    run_id: str
    job_id: Optional[str] = None
    progress_percent: int
    progress_message: str
    current_status: str = ""
    timeout: asyncio.Task
    animation: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return True

class Completed(_Phase):
    phase: Literal['completed'] = 'completed'
    run_id: str
    job_id: Optional[str] = None
    progress_percent: Literal[100] = 100
    progress_message: str

class Failed(_Phase):
    phase: Literal['failed'] = 'failed'
    run_id: str
    job_id: Optional[str] = None
    error_kind: str
    error: str
    current_status: str = ""
    progress_percent: Literal[0] = 0

class TimedOut(_Phase):
    phase: Literal['timed_out'] = 'timed_out'
    run_id: str
    job_id: Optional[str] = None
    error: str
    progress_percent: Literal[0] = 0

RunState = Union[Idle, Triggering, AwaitingUpdates, Completed, Failed, TimedOut]
