"""Errors raised while starting or tracking a pipeline run.

Every error is terminal for the current run only; the controller converts
them into a Failed/TimedOut state plus a user notification.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline run failures."""

    title = "Pipeline failed"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PreconditionError(PipelineError):
    """The run could not start: no workspace, no files or already running."""

    title = "Cannot run pipeline"


class AuthenticationError(PreconditionError):
    """No signed-in user could be resolved for ``trigger_by``."""

    title = "Authentication required"


class TransportError(PipelineError):
    """The webhook call failed at the HTTP level or returned an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApplicationError(PipelineError):
    """The webhook answered but reported a failure or did not start a job."""


class TerminalStatusError(PipelineError):
    """The change feed reported a terminal-error or unrecognised status."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status
        if status == "cancelled":
            self.title = "Pipeline cancelled"


class PipelineTimeoutError(PipelineError):
    """No terminal status arrived before the hard timeout."""

    title = "Pipeline timed out"


class DatastoreError(Exception):
    """A datastore, change feed or auth provider call failed."""
