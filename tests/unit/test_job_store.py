import pytest
from unittest.mock import AsyncMock
from dashboard.errors import DatastoreError
from dashboard.job_store import RunRecordStore
from dashboard.models.job import JobRecord, JobStatus
from tests.factories import WORKSPACE_ID, make_job

@pytest.mark.unit
class TestRunRecordStore:
    @pytest.fixture
    def datastore(self):
        datastore = AsyncMock()
        datastore.fetch_jobs.return_value = []
        return datastore

    @pytest.fixture
    def store(self, datastore):
        return RunRecordStore(datastore, WORKSPACE_ID)

    def test_upsert_inserts_newest_first(self, store):
        """Records come back ordered by start time, newest first."""
        store.upsert(make_job("old", "completed", minutes_ago=10))
        store.upsert(make_job("new", "queued", minutes_ago=1))
        store.upsert(make_job("mid", "failed", minutes_ago=5))
        assert [r.id for r in store.list()] == ["new", "mid", "old"]

    def test_upsert_replaces_by_id(self, store):
        store.upsert(make_job("job-1", "queued"))
        store.upsert(make_job("job-1", "ingesting"))
        records = store.list()
        assert len(records) == 1
        assert records[0].status == "ingesting"

    def test_terminal_record_is_never_replaced(self, store):
        store.upsert(make_job("job-1", "completed"))
        kept = store.upsert(make_job("job-1", "ingesting"))
        assert kept.status == "completed"
        assert store.get("job-1").status == "completed"

    def test_update_and_discard(self, store):
        store.upsert(JobRecord.provisional_run("local-1", WORKSPACE_ID))
        updated = store.update("local-1", triggered_by="user-1")
        assert updated.triggered_by == "user-1"
        assert updated.provisional
        assert store.update("missing", status=JobStatus.FAILED) is None

        store.discard("local-1")
        assert store.get("local-1") is None

    @pytest.mark.asyncio
    async def test_refresh_replaces_list(self, store, datastore):
        datastore.fetch_jobs.return_value = [
            make_job("job-2", "completed", minutes_ago=1),
            make_job("job-1", "failed", minutes_ago=5),
        ]
        store.upsert(make_job("stale", "completed", minutes_ago=30))
        await store.refresh()
        datastore.fetch_jobs.assert_awaited_once_with(WORKSPACE_ID)
        assert [r.id for r in store.list()] == ["job-2", "job-1"]

    @pytest.mark.asyncio
    async def test_refresh_keeps_in_flight_placeholder(self, store, datastore):
        datastore.fetch_jobs.return_value = [make_job("job-1", "completed", minutes_ago=5)]
        store.upsert(JobRecord.provisional_run("local-1", WORKSPACE_ID))
        await store.refresh()
        assert [r.id for r in store.list()] == ["local-1", "job-1"]

    @pytest.mark.asyncio
    async def test_refresh_never_reopens_terminal_record(self, store, datastore):
        store.upsert(make_job("job-1", "completed"))
        datastore.fetch_jobs.return_value = [make_job("job-1", "ingesting")]
        await store.refresh()
        assert store.get("job-1").status == "completed"

    @pytest.mark.asyncio
    async def test_refresh_drops_rows_of_other_workspaces(self, store, datastore):
        datastore.fetch_jobs.return_value = [
            make_job("job-1", "completed"),
            make_job("job-x", "completed", workspace_id="ws-other"),
        ]
        await store.refresh()
        assert [r.id for r in store.list()] == ["job-1"]

    @pytest.mark.asyncio
    async def test_refresh_without_workspace_is_noop(self, datastore):
        store = RunRecordStore(datastore)
        await store.refresh()
        datastore.fetch_jobs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_keeps_list_on_datastore_error(self, store, datastore):
        store.upsert(make_job("job-1", "completed"))
        datastore.fetch_jobs.side_effect = DatastoreError("connection reset")
        await store.refresh()
        assert [r.id for r in store.list()] == ["job-1"]

    def test_stats(self, store):
        assert store.stats().total == 0
        assert store.stats().success_rate == 0.0

        store.upsert(make_job("a", "completed", minutes_ago=3))
        store.upsert(make_job("b", "failed", minutes_ago=2))
        store.upsert(make_job("c", "completed", minutes_ago=1))
        store.upsert(make_job("d", "ingesting"))
        stats = store.stats()
        assert stats.total == 4
        assert stats.successful == 2
        assert stats.failed == 1
        assert stats.success_rate == 50.0
        assert stats.last_started_at == store.get("d").started_at

    def test_clear(self, store):
        store.upsert(make_job("a", "completed"))
        store.clear()
        assert store.list() == []
