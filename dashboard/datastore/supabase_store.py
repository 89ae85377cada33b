"""Supabase-backed datastore, change feed and auth provider (DATASTORE_BACKEND=supabase)."""
import logging
from typing import List, Optional

from supabase import AsyncClient, acreate_client

from dashboard.core.config import FILES_TABLE, JOBS_TABLE, WORKSPACE_USERS_TABLE
from dashboard.datastore.base import (
    BaseAuthProvider,
    BaseChangeFeed,
    BaseDatastore,
    ChangeCallback,
    Subscription,
)
from dashboard.errors import DatastoreError
from dashboard.models.job import FileRecord, JobRecord

logger = logging.getLogger(__name__)

class _ChannelSubscription(Subscription):
    def __init__(self, client: AsyncClient, channel):
        self._client = client
        self._channel = channel

    async def close(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await self._client.remove_channel(channel)
        except Exception as exc:
            raise DatastoreError(f"Failed to remove channel: {exc}") from exc

class SupabaseDatastore(BaseDatastore, BaseChangeFeed, BaseAuthProvider):
    """Thin wrapper around the supabase async client."""

    def __init__(self, client: AsyncClient, jobs_table: str = JOBS_TABLE, files_table: str = FILES_TABLE):
        self._client = client
        self.jobs_table = jobs_table
        self.files_table = files_table

    @classmethod
    async def connect(
        cls, url: str, key: str, jobs_table: str = JOBS_TABLE, files_table: str = FILES_TABLE
    ) -> "SupabaseDatastore":
        client = await acreate_client(url, key)
        return cls(client, jobs_table=jobs_table, files_table=files_table)

    async def fetch_jobs(self, workspace_id: str) -> List[JobRecord]:
        try:
            response = await (
                self._client.table(self.jobs_table)
                .select("*")
                .eq("workspace_id", workspace_id)
                .order("started_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise DatastoreError(f"Failed to fetch jobs: {exc}") from exc
        return [JobRecord.model_validate(row) for row in response.data or []]

    async def fetch_files(self, workspace_id: str) -> List[FileRecord]:
        try:
            response = await (
                self._client.table(self.files_table)
                .select("*")
                .eq("workspace_id", workspace_id)
                .eq("is_deleted", False)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise DatastoreError(f"Failed to fetch files: {exc}") from exc
        return [FileRecord.model_validate(row) for row in response.data or []]

    async def fetch_workspace_id(self, user_id: str) -> Optional[str]:
        try:
            response = await (
                self._client.table(WORKSPACE_USERS_TABLE)
                .select("workspace_id")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise DatastoreError(f"Failed to fetch workspace: {exc}") from exc
        rows = response.data or []
        if not rows or not rows[0].get("workspace_id"):
            return None
        return str(rows[0]["workspace_id"])

    async def subscribe(self, table: str, workspace_id: str, callback: ChangeCallback) -> Subscription:
        channel = self._client.channel(f"{table}-{workspace_id}")
        channel.on_postgres_changes(
            "*",
            schema="public",
            table=table,
            filter=f"workspace_id=eq.{workspace_id}",
            callback=callback,
        )
        try:
            await channel.subscribe()
        except Exception as exc:
            await self._client.remove_channel(channel)
            raise DatastoreError(f"Failed to subscribe to {table}: {exc}") from exc
        logger.info(f"Subscribed to {table} changes for workspace {workspace_id}")
        return _ChannelSubscription(self._client, channel)

    async def current_user_id(self) -> Optional[str]:
        try:
            session = await self._client.auth.get_session()
        except Exception as exc:
            raise DatastoreError(f"Failed to load session: {exc}") from exc
        if session is None or session.user is None:
            return None
        return str(session.user.id)

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except Exception as exc:
            raise DatastoreError(f"Failed to sign out: {exc}") from exc
