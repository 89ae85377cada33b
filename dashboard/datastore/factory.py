"""Factory for the datastore / change feed / auth gateway."""
from dashboard.config import Settings
from dashboard.datastore.base import Gateway

async def create_gateway(settings: Settings) -> Gateway:
    """Instantiate the backend named by ``settings.DATASTORE_BACKEND``."""
    backend = settings.DATASTORE_BACKEND

    if backend == "memory":
        from dashboard.datastore.memory import InMemoryDatastore, StaticAuthProvider
        store = InMemoryDatastore(jobs_table=settings.JOBS_TABLE, files_table=settings.FILES_TABLE)
        return Gateway(datastore=store, change_feed=store, auth=StaticAuthProvider())

    if backend == "supabase":
        from dashboard.datastore.supabase_store import SupabaseDatastore
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set when DATASTORE_BACKEND=supabase")
        store = await SupabaseDatastore.connect(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY,
            jobs_table=settings.JOBS_TABLE,
            files_table=settings.FILES_TABLE,
        )
        return Gateway(datastore=store, change_feed=store, auth=store)

    raise ValueError(f"Unsupported datastore backend: {backend!r}")
