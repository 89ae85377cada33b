import os
import sys

import httpx
import pytest
import pytest_asyncio
from rich.console import Console
from rich.live import Live
from rich.table import Table

# Add the project root directory to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dashboard.datastore import InMemoryDatastore, StaticAuthProvider
from dashboard.job_store import RunRecordStore
from dashboard.notifications import ToastNotifier
from dashboard.pipeline import PipelineRunController, PipelineWebhookClient

from tests.factories import TRIGGER_URL, USER_ID, WORKSPACE_ID, WebhookRecorder, make_file

CATEGORIES = ["unit", "integration", "api"]

@pytest.fixture(scope="session")
def test_console():
    return Console()

def pytest_configure(config):
    """Add custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")

class TestProgress:
    __test__ = False

    def __init__(self):
        self.console = Console()
        self.table = Table(show_header=True, header_style="bold magenta")
        self.table.add_column("Category")
        self.table.add_column("Total")
        self.table.add_column("Passed")
        self.table.add_column("Failed")
        self.table.add_column("Duration")
        self.stats = {
            category: {"total": 0, "passed": 0, "failed": 0, "duration": 0}
            for category in CATEGORIES
        }
        self.live = None
        self.refresh_table()

    def start(self):
        """Start the live display"""
        try:
            self.refresh_table()
            self.live = Live(self.table, refresh_per_second=4)
            self.live.start()
        except Exception:
            self.live = None

    def stop(self):
        """Stop the live display"""
        if self.live:
            try:
                self.refresh_table()
                self.live.stop()
            except Exception:
                pass  # display only
            finally:
                self.live = None

    def refresh_table(self):
        self.table.rows.clear()
        for category, stats in self.stats.items():
            self.table.add_row(
                category,
                str(stats["total"]),
                f"[green]{stats['passed']}[/]",
                f"[red]{stats['failed']}[/]",
                f"{stats['duration']:.2f}s"
            )

    def update_stats(self, category, passed, duration):
        if category not in self.stats:
            return
        self.stats[category]["total"] += 1
        if passed:
            self.stats[category]["passed"] += 1
        else:
            self.stats[category]["failed"] += 1
        self.stats[category]["duration"] += duration
        self.refresh_table()

test_progress = TestProgress()

@pytest.fixture(scope="session", autouse=True)
def progress_tracker():
    test_progress.start()
    yield test_progress
    test_progress.stop()

def pytest_runtest_logreport(report):
    """Update progress after each test"""
    if report.when != "call":
        return
    # Categories follow the tests/<category>/ layout
    category = next((name for name in CATEGORIES if f"/{name}/" in f"/{report.nodeid}"), "unit")
    test_progress.update_stats(category, report.passed, report.duration)

# -- fixtures ---------------------------------------------------------------

@pytest.fixture
def datastore():
    store = InMemoryDatastore()
    store.link_user(USER_ID, WORKSPACE_ID)
    store.add_file(make_file("f1"))
    store.add_file(make_file("f2"))
    return store

@pytest.fixture
def auth():
    return StaticAuthProvider(USER_ID)

@pytest.fixture
def toasts():
    return ToastNotifier()

@pytest.fixture
def webhook_handler():
    return WebhookRecorder()

@pytest_asyncio.fixture
async def webhook(webhook_handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(webhook_handler))
    yield PipelineWebhookClient(TRIGGER_URL, http_client=client)
    await client.aclose()

@pytest.fixture
def record_store(datastore):
    return RunRecordStore(datastore, WORKSPACE_ID)

@pytest_asyncio.fixture
async def controller(datastore, auth, toasts, webhook, record_store):
    controller = PipelineRunController(
        workspace_id=WORKSPACE_ID,
        files=lambda: datastore.fetch_files(WORKSPACE_ID),
        notifier=toasts,
        webhook=webhook,
        auth=auth,
        change_feed=datastore,
        store=record_store,
        hard_timeout=0.5,
        ingesting_tick=0.01,
    )
    yield controller
    await controller.close()
