import logging
from typing import List, Optional
from threading import Lock
from dashboard.datastore.base import BaseDatastore
from dashboard.errors import DatastoreError
from dashboard.models.job import JobRecord
from dashboard.taxonomy import StatusClass, classify, is_terminal
from dashboard.schemas import RunStats

logger = logging.getLogger(__name__)

def _is_terminal(record: JobRecord) -> bool:
    return is_terminal(record.status)

class RunRecordStore:
    """Thread-safe in-memory list of a workspace's pipeline job records."""
    def __init__(self, datastore: BaseDatastore, workspace_id: Optional[str] = None):
        self._datastore = datastore
        self.workspace_id = workspace_id
        self._records: List[JobRecord] = []  # newest first
        self._lock = Lock()

    def list(self) -> List[JobRecord]:
        """Records ordered by start time, newest first."""
        with self._lock:
            records = list(self._records)
        # Stable sort: records without a start time keep their insertion order at the front.
        return sorted(
            records,
            key=lambda r: (r.started_at is None, r.started_at.timestamp() if r.started_at else 0.0),
            reverse=True,
        )

    def get(self, record_id: str) -> Optional[JobRecord]:
        with self._lock:
            return next((r for r in self._records if r.id == record_id), None)

    def upsert(self, record: JobRecord) -> JobRecord:
        """Replace the record with the same id, or prepend it as newest.

        A record that already reached a terminal status is never replaced by a
        different status; the stored record is returned instead.
        """
        with self._lock:
            for index, existing in enumerate(self._records):
                if existing.id != record.id:
                    continue
                if _is_terminal(existing) and record.status != existing.status:
                    logger.info(
                        f"Ignoring {record.status} for job {record.id}: already {existing.status}"
                    )
                    return existing
                self._records[index] = record
                return record
            self._records.insert(0, record)
            return record

    def update(self, record_id: str, **changes) -> Optional[JobRecord]:
        """Apply field changes to a stored record, honouring the terminal rule."""
        existing = self.get(record_id)
        if existing is None:
            return None
        return self.upsert(existing.model_copy(update=changes))

    def discard(self, record_id: str) -> None:
        with self._lock:
            self._records = [r for r in self._records if r.id != record_id]

    async def refresh(self) -> None:
        """Re-fetch the workspace's records from the datastore.

        No-op without a workspace id. On datastore errors the current list is kept.
        """
        workspace_id = self.workspace_id
        if not workspace_id:
            logger.info("Skipping job refresh: no workspace loaded")
            return
        try:
            fetched = await self._datastore.fetch_jobs(workspace_id)
        except DatastoreError as e:
            logger.error(f"Failed to refresh jobs for workspace {workspace_id}: {str(e)}")
            return

        with self._lock:
            current = {r.id: r for r in self._records}
            merged: List[JobRecord] = []
            for record in fetched:
                if record.workspace_id != workspace_id:
                    continue
                local = current.get(record.id)
                if local is not None and _is_terminal(local) and record.status != local.status:
                    merged.append(local)
                else:
                    merged.append(record)
            fetched_ids = {r.id for r in merged}
            # Keep local placeholders of runs that are still in flight.
            in_flight = [
                r for r in self._records
                if r.provisional and not _is_terminal(r) and r.id not in fetched_ids
            ]
            self._records = in_flight + merged

    def stats(self) -> RunStats:
        records = self.list()
        successful = sum(1 for r in records if classify(r.status) is StatusClass.COMPLETED)
        failed = sum(1 for r in records if r.status is not None and classify(r.status).is_failure)
        total = len(records)
        return RunStats(
            total=total,
            successful=successful,
            failed=failed,
            success_rate=round(successful / total * 100, 1) if total else 0.0,
            last_started_at=records[0].started_at if records else None,
        )

    def clear(self) -> None:
        with self._lock:
            self._records = []
