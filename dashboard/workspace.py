"""Active-workspace lifecycle: resolve the user's workspace and own its controller."""
import logging
from typing import Optional

from cachetools import TTLCache

from dashboard.config import Settings
from dashboard.core.config import WORKSPACE_CACHE
from dashboard.datastore import Gateway, create_gateway
from dashboard.datastore.base import BaseAuthProvider, BaseDatastore
from dashboard.errors import PreconditionError
from dashboard.job_store import RunRecordStore
from dashboard.notifications import EmailNotifier, Notifier, ToastNotifier, fan_out
from dashboard.pipeline import PipelineRunController, PipelineWebhookClient

logger = logging.getLogger(__name__)

class WorkspaceResolver:
    """Looks up the signed-in user's workspace, caching the answer per user."""

    def __init__(self, datastore: BaseDatastore, auth: BaseAuthProvider, cache: Optional[TTLCache] = None):
        self._datastore = datastore
        self._auth = auth
        self._cache = WORKSPACE_CACHE if cache is None else cache

    async def resolve(self, user_id: Optional[str] = None) -> Optional[str]:
        if user_id is None:
            user_id = await self._auth.current_user_id()
        if not user_id:
            logger.info("No session found when loading workspace")
            return None

        cached = self._cache.get(user_id)
        if cached:
            logger.info(f"Using cached workspace ID: {cached}")
            return cached

        workspace_id = await self._datastore.fetch_workspace_id(user_id)
        if not workspace_id:
            logger.warning(f"No workspace found for user {user_id}")
            return None
        logger.info(f"Workspace ID loaded for user {user_id}: {workspace_id}")
        self._cache[user_id] = workspace_id
        return workspace_id

    def clear(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

class WorkspaceSession:
    """Holds at most one PipelineRunController, for the active workspace."""

    def __init__(
        self,
        gateway: Gateway,
        webhook: PipelineWebhookClient,
        notifier: Notifier,
        settings: Settings,
        toasts: Optional[ToastNotifier] = None,
        resolver: Optional[WorkspaceResolver] = None,
    ):
        self.gateway = gateway
        self.webhook = webhook
        self.notifier = notifier
        self.settings = settings
        self.toasts = toasts
        self.resolver = resolver or WorkspaceResolver(gateway.datastore, gateway.auth)
        self.controller: Optional[PipelineRunController] = None

    @property
    def workspace_id(self) -> Optional[str]:
        return self.controller.workspace_id if self.controller else None

    async def activate(self, workspace_id: Optional[str] = None) -> PipelineRunController:
        """Make *workspace_id* (or the session user's workspace) the active one."""
        if workspace_id is None:
            workspace_id = await self.resolver.resolve()
        if not workspace_id:
            raise PreconditionError("Workspace not loaded")
        if self.controller is not None and self.controller.workspace_id == workspace_id:
            return self.controller

        await self.deactivate()
        datastore = self.gateway.datastore
        store = RunRecordStore(datastore, workspace_id)
        controller = PipelineRunController(
            workspace_id=workspace_id,
            files=lambda: datastore.fetch_files(workspace_id),
            notifier=self.notifier,
            webhook=self.webhook,
            auth=self.gateway.auth,
            change_feed=self.gateway.change_feed,
            store=store,
            hard_timeout=self.settings.PIPELINE_HARD_TIMEOUT_SECONDS,
            ingesting_tick=self.settings.INGESTING_TICK_SECONDS,
            jobs_table=self.settings.JOBS_TABLE,
        )
        await store.refresh()
        self.controller = controller
        logger.info(f"Workspace {workspace_id} activated")
        return controller

    async def deactivate(self) -> None:
        controller, self.controller = self.controller, None
        if controller is not None:
            await controller.close()
            logger.info(f"Workspace {controller.workspace_id} deactivated")

    async def sign_out(self) -> None:
        await self.deactivate()
        self.resolver.clear()
        await self.gateway.auth.sign_out()

    async def aclose(self) -> None:
        await self.deactivate()
        await self.webhook.aclose()

async def build_session(settings: Settings) -> WorkspaceSession:
    """Wire gateway, webhook client and notifiers from settings."""
    gateway = await create_gateway(settings)
    webhook = PipelineWebhookClient(
        settings.PIPELINE_TRIGGER_URL, timeout=settings.PIPELINE_REQUEST_TIMEOUT_SECONDS
    )
    toasts = ToastNotifier()
    notifiers = [toasts]
    if settings.NOTIFY_EMAIL:
        notifiers.append(EmailNotifier(settings.NOTIFY_EMAIL))
    resolver = WorkspaceResolver(
        gateway.datastore, gateway.auth, cache=TTLCache(maxsize=100, ttl=settings.WORKSPACE_CACHE_TTL)
    )
    return WorkspaceSession(gateway, webhook, fan_out(*notifiers), settings, toasts=toasts, resolver=resolver)
