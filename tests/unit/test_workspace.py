import httpx
import pytest
import pytest_asyncio
from cachetools import TTLCache
from unittest.mock import AsyncMock
from dashboard.config import Settings
from dashboard.datastore import Gateway, InMemoryDatastore, StaticAuthProvider
from dashboard.errors import PreconditionError
from dashboard.notifications import ToastNotifier
from dashboard.pipeline import PipelineWebhookClient
from dashboard.workspace import WorkspaceResolver, WorkspaceSession, build_session
from tests.factories import TRIGGER_URL, USER_ID, WORKSPACE_ID, WebhookRecorder, make_job

@pytest.mark.unit
class TestWorkspaceResolver:
    @pytest.fixture
    def datastore(self):
        datastore = InMemoryDatastore()
        datastore.link_user(USER_ID, WORKSPACE_ID)
        return datastore

    @pytest.mark.asyncio
    async def test_resolves_from_session_and_caches(self, datastore):
        cache = TTLCache(maxsize=10, ttl=60)
        resolver = WorkspaceResolver(datastore, StaticAuthProvider(USER_ID), cache=cache)
        datastore.fetch_workspace_id = AsyncMock(wraps=datastore.fetch_workspace_id)

        assert await resolver.resolve() == WORKSPACE_ID
        assert await resolver.resolve() == WORKSPACE_ID
        datastore.fetch_workspace_id.assert_awaited_once_with(USER_ID)
        assert cache[USER_ID] == WORKSPACE_ID

        resolver.clear(USER_ID)
        assert USER_ID not in cache

    @pytest.mark.asyncio
    async def test_signed_out_or_unlinked(self, datastore):
        cache = TTLCache(maxsize=10, ttl=60)
        assert await WorkspaceResolver(datastore, StaticAuthProvider(None), cache=cache).resolve() is None
        assert await WorkspaceResolver(datastore, StaticAuthProvider("stranger"), cache=cache).resolve() is None
        assert len(cache) == 0

@pytest.mark.unit
class TestWorkspaceSession:
    @pytest.fixture
    def datastore(self):
        datastore = InMemoryDatastore()
        datastore.link_user(USER_ID, WORKSPACE_ID)
        return datastore

    @pytest_asyncio.fixture
    async def session(self, datastore):
        auth = StaticAuthProvider(USER_ID)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(WebhookRecorder()))
        toasts = ToastNotifier()
        session = WorkspaceSession(
            Gateway(datastore, datastore, auth),
            PipelineWebhookClient(TRIGGER_URL, http_client=http_client),
            toasts,
            Settings(_env_file=None),
            toasts=toasts,
            resolver=WorkspaceResolver(datastore, auth, cache=TTLCache(maxsize=10, ttl=60)),
        )
        yield session
        await session.aclose()
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_activate_resolves_and_refreshes(self, session, datastore):
        await datastore.upsert_job(make_job("job-1", "completed"))
        controller = await session.activate()
        assert session.workspace_id == WORKSPACE_ID
        assert [r.id for r in controller.runs()] == ["job-1"]
        assert await session.activate(WORKSPACE_ID) is controller

    @pytest.mark.asyncio
    async def test_switching_workspace_replaces_controller(self, session):
        first = await session.activate(WORKSPACE_ID)
        second = await session.activate("ws-2")
        assert first is not second
        assert session.workspace_id == "ws-2"

        await session.deactivate()
        assert session.controller is None

    @pytest.mark.asyncio
    async def test_activate_without_workspace(self, session):
        await session.gateway.auth.sign_out()
        with pytest.raises(PreconditionError) as exc_info:
            await session.activate()
        assert exc_info.value.message == "Workspace not loaded"

    @pytest.mark.asyncio
    async def test_sign_out(self, session):
        await session.activate()
        await session.sign_out()
        assert session.controller is None
        assert await session.gateway.auth.current_user_id() is None

@pytest.mark.unit
@pytest.mark.asyncio
async def test_build_session_from_settings():
    settings = Settings(_env_file=None, DATASTORE_BACKEND="memory", NOTIFY_EMAIL=None)
    session = await build_session(settings)
    try:
        assert isinstance(session.gateway.datastore, InMemoryDatastore)
        assert isinstance(session.toasts, ToastNotifier)
        assert session.webhook.url == settings.PIPELINE_TRIGGER_URL
    finally:
        await session.aclose()
