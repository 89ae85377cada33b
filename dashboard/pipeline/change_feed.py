"""Bridge between job-table change notifications and the run controller."""
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from dashboard.core.config import JOBS_TABLE
from dashboard.datastore.base import BaseChangeFeed, Subscription
from dashboard.errors import DatastoreError
from dashboard.job_store import RunRecordStore
from dashboard.models.job import JobRecord
from dashboard.taxonomy import StatusClass, classify

logger = logging.getLogger(__name__)

StatusHandler = Callable[[JobRecord, StatusClass], None]

ACCEPTED_EVENTS = frozenset({"INSERT", "UPDATE"})

def extract_change(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Return ``(event_type, new_row)`` from a change payload.

    Handles both the realtime wire shape (``{"data": {"type", "record"}}``)
    and the flattened one (``{"eventType", "new"}``).
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    event_type = data.get("type") or data.get("eventType")
    row = data.get("record") or data.get("new")
    return (str(event_type).upper() if event_type else None, row or None)

class ChangeFeedListener:
    """Owns the job-table subscription of one workspace while a run is in flight."""

    def __init__(self, change_feed: BaseChangeFeed, store: RunRecordStore, table: str = JOBS_TABLE):
        self._feed = change_feed
        self._store = store
        self.table = table
        self._subscription: Optional[Subscription] = None
        self._handler: Optional[StatusHandler] = None
        self._workspace_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self._subscription is not None

    async def start(self, workspace_id: Optional[str], handler: StatusHandler) -> bool:
        """Subscribe for *workspace_id*; returns False when no workspace is known."""
        if not workspace_id:
            logger.warning("Not subscribing to job changes: no workspace loaded")
            return False
        if self._subscription is not None:
            await self._release()
        self._workspace_id = workspace_id
        self._handler = handler
        try:
            self._subscription = await self._feed.subscribe(self.table, workspace_id, self._receive)
        except DatastoreError:
            self._handler = None
            raise
        return True

    async def stop(self) -> None:
        """Release the subscription (at most once) and refresh the record store."""
        if await self._release():
            await self._store.refresh()

    async def _release(self) -> bool:
        subscription, self._subscription = self._subscription, None
        self._handler = None
        if subscription is None:
            return False
        try:
            await subscription.close()
        except DatastoreError as e:
            logger.error(f"Failed to release job subscription: {str(e)}")
        logger.info(f"Released job subscription for workspace {self._workspace_id}")
        return True

    def _receive(self, payload: Dict[str, Any]) -> None:
        handler = self._handler
        if handler is None:
            return

        event_type, row = extract_change(payload)
        if event_type not in ACCEPTED_EVENTS:
            logger.debug(f"Ignoring {event_type} change on {self.table}")
            return
        if not row:
            return
        # The server filters by workspace already; a stale filter can still leak rows.
        if str(row.get("workspace_id")) != self._workspace_id:
            logger.warning(f"Dropping change for workspace {row.get('workspace_id')}, listening to {self._workspace_id}")
            return

        try:
            record = JobRecord.model_validate(row)
        except ValidationError as e:
            logger.warning(f"Dropping malformed job row: {str(e)}")
            return

        handler(record, classify(record.status))
