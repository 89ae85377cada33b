"""Pipeline run controller.

Drives one run at a time through ``Idle -> Triggering -> AwaitingUpdates ->
Completed | Failed | TimedOut``. The webhook call is the only awaited step of
a trigger; afterwards progress is pushed by the change feed, and every state
mutation happens synchronously inside the feed callback.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence

from dashboard.core.config import (
    AWAITING_UPDATES_PROGRESS,
    INGESTING_CEILING,
    INGESTING_STEP,
    INGESTING_TICK,
    JOBS_TABLE,
    PIPELINE_HARD_TIMEOUT,
    REQUEST_SENT_PROGRESS,
)
from dashboard.core.logging import release_run_logger, setup_run_logger
from dashboard.datastore.base import BaseAuthProvider, BaseChangeFeed
from dashboard.errors import (
    AuthenticationError,
    DatastoreError,
    PipelineError,
    PipelineTimeoutError,
    PreconditionError,
    TerminalStatusError,
    TransportError,
)
from dashboard.job_store import RunRecordStore
from dashboard.models.job import FileRecord, JobRecord, JobStatus, utcnow
from dashboard.models.state import (
    AwaitingUpdates,
    Completed,
    Failed,
    Idle,
    RunState,
    TimedOut,
    Triggering,
)
from dashboard.notifications import Notifier
from dashboard.pipeline.change_feed import ChangeFeedListener
from dashboard.pipeline.webhook import PipelineWebhookClient, WebhookOutcome
from dashboard.schemas import Notification, PipelineSnapshot, TriggerPayload
from dashboard.taxonomy import StatusClass, is_terminal, lookup

logger = logging.getLogger(__name__)

FilesProvider = Callable[[], Awaitable[Sequence[FileRecord]]]
StateListener = Callable[[RunState], None]

def format_duration(started_at: Optional[datetime]) -> Optional[str]:
    """Elapsed time since *started_at* as ``"2m 15s"``."""
    if started_at is None:
        return None
    seconds = max(0, int((utcnow() - started_at).total_seconds()))
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m {seconds}s" if minutes else f"{seconds}s"

class PipelineRunController:
    """Triggers the ingestion pipeline for one workspace and tracks the run."""

    def __init__(
        self,
        workspace_id: Optional[str],
        files: FilesProvider,
        notifier: Notifier,
        webhook: PipelineWebhookClient,
        auth: BaseAuthProvider,
        change_feed: BaseChangeFeed,
        store: RunRecordStore,
        hard_timeout: float = PIPELINE_HARD_TIMEOUT,
        ingesting_tick: float = INGESTING_TICK,
        jobs_table: str = JOBS_TABLE,
    ):
        self.workspace_id = workspace_id
        self._files = files
        self._notifier = notifier
        self._webhook = webhook
        self._auth = auth
        self._store = store
        self._listener = ChangeFeedListener(change_feed, store, table=jobs_table)
        self.hard_timeout = hard_timeout
        self.ingesting_tick = ingesting_tick

        self._state: RunState = Idle()
        self._state_listeners: List[StateListener] = []
        self._trigger_lock = asyncio.Lock()
        self._teardown: Optional[asyncio.Task] = None
        self._last_stamp = 0
        self._run_logger = logger
        # Runs the client gave up on; the server-side job may still be alive.
        self.abandoned_runs: List[str] = []

    # -- derived state -----------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def store(self) -> RunRecordStore:
        return self._store

    @property
    def listener(self) -> ChangeFeedListener:
        return self._listener

    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot.from_state(self._state)

    def runs(self) -> List[JobRecord]:
        return self._store.list()

    def add_listener(self, callback: StateListener) -> Callable[[], None]:
        """Call *callback* with every new state; returns an unsubscribe function."""
        self._state_listeners.append(callback)
        return lambda: self._state_listeners.remove(callback)

    # -- operations --------------------------------------------------------

    async def trigger_pipeline(self) -> RunState:
        """Start a new run. Precondition failures only produce a notification."""
        if self.is_running or self._trigger_lock.locked():
            self._reject(PreconditionError("A pipeline run is already in progress"))
            return self._state
        async with self._trigger_lock:
            try:
                return await self._start_run()
            except Exception as e:
                if not self.is_running:
                    raise
                self._run_logger.error(f"Run {self._state.run_id} failed unexpectedly: {str(e)}", exc_info=True)
                self._settle_failure(PipelineError(f"Unexpected error: {str(e)}"))
                self._schedule_teardown()
                return self._state

    async def refresh(self) -> None:
        await self._store.refresh()

    async def wait_for_teardown(self) -> None:
        """Wait until the last run's subscription is released and the store refreshed."""
        if self._teardown is not None:
            await self._teardown

    async def close(self) -> None:
        """Abandon any in-flight run locally and release timers and subscription."""
        state = self._state
        self._disarm(state)
        if state.is_running:
            self._run_logger.warning(f"Run {state.run_id} abandoned: controller closed")
            release_run_logger(self._run_logger)
            self._run_logger = logger
        if not isinstance(state, Idle):
            self._set_state(Idle())
        await self._listener.stop()
        await self.wait_for_teardown()

    # -- Idle -> Triggering ------------------------------------------------

    async def _start_run(self) -> RunState:
        # The previous run must release its subscription before this one subscribes.
        await self.wait_for_teardown()
        if not self.workspace_id:
            self._reject(PreconditionError("Workspace not loaded"))
            return self._state
        try:
            files = list(await self._files())
        except DatastoreError as e:
            self._reject(PreconditionError(f"Could not load files: {str(e)}"))
            return self._state
        if not files:
            self._reject(PreconditionError("Cannot run pipeline: no files"))
            return self._state

        workspace_id = self.workspace_id
        # Millisecond stamps, kept strictly increasing for back-to-back runs.
        self._last_stamp = max(int(time.time() * 1000), self._last_stamp + 1)
        run_id = f"local-{self._last_stamp}"
        self._run_logger = setup_run_logger(run_id)
        self._run_logger.info(f"Starting run {run_id} for workspace {workspace_id} with {len(files)} file(s)")
        self._set_state(Triggering(run_id=run_id))
        self._store.upsert(JobRecord.provisional_run(run_id, workspace_id))

        try:
            user_id = await self._auth.current_user_id()
        except DatastoreError as e:
            self._run_logger.error(f"Session lookup failed: {str(e)}")
            user_id = None
        if not self._is_current(run_id):
            return self._state
        if not user_id:
            self._store.discard(run_id)
            self._set_state(Idle())
            self._reject(AuthenticationError("You must be signed in to run the pipeline"))
            self._finish_run_log()
            return self._state
        self._store.update(run_id, triggered_by=user_id)

        payload = TriggerPayload(
            file_ids=[f.id for f in files],
            workspace_id=workspace_id,
            trigger_by=user_id,
        )
        self._set_state(self._state.model_copy(update={
            "progress_percent": REQUEST_SENT_PROGRESS,
            "progress_message": "Sending request to pipeline...",
        }))

        try:
            outcome = await self._webhook.trigger(payload)
        except PipelineError as e:
            if self._is_current(run_id):
                self._settle_failure(e)
            return self._state
        if not self._is_current(run_id):
            return self._state

        if outcome is WebhookOutcome.COMPLETED:
            self._settle_success("Pipeline completed successfully!")
            return self._state

        await self._await_updates(run_id)
        return self._state

    # -- Triggering -> AwaitingUpdates ---------------------------------------

    async def _await_updates(self, run_id: str) -> None:
        self._set_state(AwaitingUpdates(
            run_id=run_id,
            progress_percent=AWAITING_UPDATES_PROGRESS,
            progress_message="Waiting for pipeline updates...",
            timeout=self._arm_timeout(run_id),
        ))
        self._run_logger.info(f"Waiting for pipeline updates (hard timeout {self.hard_timeout}s)")
        try:
            await self._listener.start(self.workspace_id, self._on_status)
        except DatastoreError as e:
            if self._is_current(run_id):
                self._settle_failure(TransportError(f"Could not subscribe to pipeline updates: {str(e)}"))
            return
        if not self._is_current(run_id):
            # Closed or settled while subscribing.
            await self._listener.stop()

    def _on_status(self, record: JobRecord, status_class: StatusClass) -> None:
        state = self._state
        if not isinstance(state, AwaitingUpdates):
            logger.info(f"Ignoring status {record.status} for job {record.id}: no run awaiting updates")
            return

        if state.job_id is not None and record.id != state.job_id:
            # Another job of the same workspace; keep the list current but do not drive this run.
            self._store.upsert(record)
            logger.info(f"Job {record.id} is not tracked by run {state.run_id}")
            return
        existing = self._store.get(record.id)
        if state.job_id is None and existing is not None and is_terminal(existing.status):
            logger.info(f"Ignoring late {record.status} for finished job {record.id}")
            return

        # Any delivery is evidence of liveness: restart the hard timeout.
        state.timeout.cancel()
        job_id = state.job_id
        if job_id is None:
            job_id = record.id
            if record.id != state.run_id:
                self._store.discard(state.run_id)
            self._run_logger.info(f"Run {state.run_id} bound to job {job_id}")
        self._store.upsert(record)
        self._run_logger.info(f"Job {record.id} status: {record.status}")

        if record.status is None:
            self._set_state(state.model_copy(update={
                "job_id": job_id,
                "timeout": self._arm_timeout(state.run_id),
            }))
        elif status_class is StatusClass.HAPPY:
            self._advance(state, record, job_id)
        elif status_class is StatusClass.COMPLETED:
            self._set_state(state.model_copy(update={"job_id": job_id}))
            self._settle_success(lookup(record.status).message, record)
            self._schedule_teardown()
        else:
            self._set_state(state.model_copy(update={"job_id": job_id}))
            self._settle_failure(
                TerminalStatusError(lookup(record.status).message, status=record.status),
                record=record,
            )
            self._schedule_teardown()

    def _advance(self, state: AwaitingUpdates, record: JobRecord, job_id: str) -> None:
        info = lookup(record.status)
        animation = state.animation
        if record.status == JobStatus.INGESTING:
            if animation is None or animation.done():
                animation = asyncio.create_task(self._animate_ingesting(state.run_id))
        elif animation is not None:
            animation.cancel()
            animation = None
        self._set_state(state.model_copy(update={
            "job_id": job_id,
            "timeout": self._arm_timeout(state.run_id),
            "animation": animation,
            "current_status": record.status,
            "progress_message": info.message,
            "progress_percent": max(state.progress_percent, info.progress),
        }))

    async def _animate_ingesting(self, run_id: str) -> None:
        """Climb from the ingesting floor toward the ceiling; 100 is reserved for completion."""
        while True:
            await asyncio.sleep(self.ingesting_tick)
            state = self._state
            if not isinstance(state, AwaitingUpdates) or state.run_id != run_id:
                return
            if state.current_status != JobStatus.INGESTING or state.progress_percent >= INGESTING_CEILING:
                return
            self._set_state(state.model_copy(update={
                "progress_percent": min(state.progress_percent + INGESTING_STEP, INGESTING_CEILING),
            }))

    # -- hard timeout --------------------------------------------------------

    def _arm_timeout(self, run_id: str) -> asyncio.Task:
        return asyncio.create_task(self._expire(run_id))

    async def _expire(self, run_id: str) -> None:
        await asyncio.sleep(self.hard_timeout)
        state = self._state
        if not isinstance(state, AwaitingUpdates) or state.run_id != run_id:
            return
        self._disarm(state)
        self.abandoned_runs.append(state.job_id or run_id)
        error = PipelineTimeoutError(
            f"No pipeline updates received within {format_timeout(self.hard_timeout)}. "
            "The job may still be running on the server."
        )
        self._store.update(
            run_id,
            status=JobStatus.FAILED,
            error_message=error.message,
            finished_at=utcnow(),
        )
        self._set_state(TimedOut(run_id=run_id, job_id=state.job_id, error=error.message))
        self._notify(error.title, error.message, "destructive", run_id)
        self._run_logger.error(f"Run {run_id} timed out")
        self._finish_run_log()
        self._schedule_teardown()

    # -- settling ------------------------------------------------------------

    def _settle_success(self, message: str, record: Optional[JobRecord] = None) -> None:
        state = self._state
        self._disarm(state)
        job_id = getattr(state, "job_id", None)
        if record is None:
            provisional = self._store.get(state.run_id)
            self._store.update(
                state.run_id,
                status=JobStatus.COMPLETED,
                finished_at=utcnow(),
                total_time_taken=format_duration(provisional.started_at if provisional else None),
            )
        self._set_state(Completed(run_id=state.run_id, job_id=job_id, progress_message=message))
        self._notify("Pipeline completed", message, "default", state.run_id)
        self._run_logger.info(f"Run {state.run_id} completed")
        self._finish_run_log()

    def _settle_failure(self, error: PipelineError, record: Optional[JobRecord] = None) -> None:
        state = self._state
        self._disarm(state)
        job_id = getattr(state, "job_id", None)
        if record is None:
            self._store.update(
                state.run_id,
                status=JobStatus.FAILED,
                error_message=error.message,
                finished_at=utcnow(),
            )
        self._set_state(Failed(
            run_id=state.run_id,
            job_id=job_id,
            error_kind=type(error).__name__,
            error=error.message,
            current_status=record.status if record is not None and record.status else "",
        ))
        self._notify(error.title, error.message, "destructive", state.run_id)
        self._run_logger.error(f"Run {state.run_id} failed: {error.message}")
        self._finish_run_log()

    def _schedule_teardown(self) -> None:
        self._teardown = asyncio.create_task(self._listener.stop())

    def _disarm(self, state: RunState) -> None:
        current = asyncio.current_task()
        for task in (getattr(state, "timeout", None), getattr(state, "animation", None)):
            if task is not None and task is not current and not task.done():
                task.cancel()

    # -- helpers ---------------------------------------------------------------

    def _is_current(self, run_id: str) -> bool:
        return self._state.is_running and self._state.run_id == run_id

    def _set_state(self, state: RunState) -> None:
        self._state = state
        for callback in list(self._state_listeners):
            callback(state)

    def _reject(self, error: PreconditionError) -> None:
        logger.warning(f"Pipeline trigger rejected: {error.message}")
        self._notify(error.title, error.message, "destructive")

    def _notify(self, title: str, description: str, variant: str, run_id: Optional[str] = None) -> None:
        self._notifier(Notification(title=title, description=description, variant=variant, run_id=run_id))

    def _finish_run_log(self) -> None:
        if self._run_logger is not logger:
            release_run_logger(self._run_logger)
        self._run_logger = logger

def format_timeout(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"
