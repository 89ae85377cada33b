"""In-process datastore with a change feed (DATASTORE_BACKEND=memory).

Rows live in dictionaries; writes through :meth:`InMemoryDatastore.upsert_job`
are pushed to matching subscribers the same way the hosted change feed
delivers them, so local runs and tests exercise the real listener path.
"""
import logging
from typing import Any, Dict, List, Optional

from dashboard.core.config import FILES_TABLE, JOBS_TABLE
from dashboard.datastore.base import (
    BaseAuthProvider,
    BaseChangeFeed,
    BaseDatastore,
    ChangeCallback,
    Subscription,
)
from dashboard.models.job import FileRecord, JobRecord, utcnow

logger = logging.getLogger(__name__)

class _MemorySubscription(Subscription):
    def __init__(self, feed: "InMemoryDatastore", table: str, workspace_id: str, callback: ChangeCallback):
        self.table = table
        self.workspace_id = workspace_id
        self.callback = callback
        self.closed = False
        self._feed = feed

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._detach(self)

class InMemoryDatastore(BaseDatastore, BaseChangeFeed):
    """Datastore and change feed backed by process memory."""

    def __init__(self, jobs_table: str = JOBS_TABLE, files_table: str = FILES_TABLE):
        self.jobs_table = jobs_table
        self.files_table = files_table
        self._jobs: Dict[str, JobRecord] = {}
        self._files: Dict[str, FileRecord] = {}
        self._workspace_users: Dict[str, str] = {}
        self._subscriptions: List[_MemorySubscription] = []
        self.subscribe_count = 0

    # -- read side ---------------------------------------------------------

    async def fetch_jobs(self, workspace_id: str) -> List[JobRecord]:
        jobs = [j for j in self._jobs.values() if j.workspace_id == workspace_id]
        return sorted(jobs, key=lambda j: j.started_at or utcnow(), reverse=True)

    async def fetch_files(self, workspace_id: str) -> List[FileRecord]:
        files = [
            f for f in self._files.values()
            if f.workspace_id == workspace_id and not f.is_deleted
        ]
        return sorted(files, key=lambda f: f.created_at, reverse=True)

    async def fetch_workspace_id(self, user_id: str) -> Optional[str]:
        return self._workspace_users.get(user_id)

    # -- write side --------------------------------------------------------

    def add_file(self, record: FileRecord) -> FileRecord:
        self._files[record.id] = record
        return record

    def soft_delete_file(self, file_id: str) -> None:
        record = self._files[file_id]
        self._files[file_id] = record.model_copy(update={"is_deleted": True, "deleted_at": utcnow()})

    def link_user(self, user_id: str, workspace_id: str) -> None:
        self._workspace_users[user_id] = workspace_id

    async def upsert_job(self, record: JobRecord) -> JobRecord:
        """Write a job row and notify subscribers with INSERT or UPDATE."""
        event_type = "UPDATE" if record.id in self._jobs else "INSERT"
        self._jobs[record.id] = record
        self.emit(event_type, self.jobs_table, record.model_dump(mode="json"))
        return record

    def emit(self, event_type: str, table: str, row: Dict[str, Any]) -> None:
        """Deliver a raw change to every subscriber whose filter matches."""
        payload = {
            "data": {
                "type": event_type,
                "table": table,
                "schema": "public",
                "record": row,
                "commit_timestamp": utcnow().isoformat(),
            }
        }
        for subscription in list(self._subscriptions):
            if subscription.table != table:
                continue
            if str(row.get("workspace_id")) != subscription.workspace_id:
                continue
            subscription.callback(payload)

    # -- change feed -------------------------------------------------------

    async def subscribe(self, table: str, workspace_id: str, callback: ChangeCallback) -> Subscription:
        subscription = _MemorySubscription(self, table, workspace_id, callback)
        self._subscriptions.append(subscription)
        self.subscribe_count += 1
        logger.info(f"Subscribed to {table} changes for workspace {workspace_id}")
        return subscription

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    def _detach(self, subscription: _MemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.info(f"Unsubscribed from {subscription.table} changes for workspace {subscription.workspace_id}")

class StaticAuthProvider(BaseAuthProvider):
    """Auth provider with a fixed signed-in user (None means signed out)."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    async def current_user_id(self) -> Optional[str]:
        return self.user_id

    async def sign_out(self) -> None:
        self.user_id = None
