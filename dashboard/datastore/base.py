"""Interfaces of the external collaborators the dashboard consumes.

The relational datastore (job/file records), its change feed and the auth
provider are owned by other systems; the pipeline code only talks to them
through these interfaces.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from dashboard.models.job import FileRecord, JobRecord

# Receives the raw change payload; invoked by the transport for every matching row change.
ChangeCallback = Callable[[Dict[str, Any]], None]

class Subscription(ABC):
    """Disposable handle for one change-feed subscription."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying channel."""

class BaseDatastore(ABC):
    """Read side of the relational datastore."""

    @abstractmethod
    async def fetch_jobs(self, workspace_id: str) -> List[JobRecord]:
        """Job records of a workspace, newest first."""

    @abstractmethod
    async def fetch_files(self, workspace_id: str) -> List[FileRecord]:
        """File records of a workspace, soft-deleted rows excluded."""

    @abstractmethod
    async def fetch_workspace_id(self, user_id: str) -> Optional[str]:
        """Workspace a user belongs to, if any."""

class BaseChangeFeed(ABC):
    """Push-based row change notifications."""

    @abstractmethod
    async def subscribe(self, table: str, workspace_id: str, callback: ChangeCallback) -> Subscription:
        """Subscribe to changes on *table* filtered by ``workspace_id``."""

class BaseAuthProvider(ABC):
    """Session lookup; authentication mechanics live elsewhere."""

    @abstractmethod
    async def current_user_id(self) -> Optional[str]:
        """Id of the signed-in user, or None without a valid session."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""

class Gateway(NamedTuple):
    datastore: BaseDatastore
    change_feed: BaseChangeFeed
    auth: BaseAuthProvider
