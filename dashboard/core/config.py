from pathlib import Path
from dotenv import load_dotenv
from cachetools import TTLCache
from datetime import datetime

# Load environment variables
load_dotenv()

# Global Constants
DEFAULT_PIPELINE_TRIGGER_URL = "https://ai-workflows-n8n.up.railway.app/webhook/trigger-pipeline"
PIPELINE_HARD_TIMEOUT = 15 * 60  # seconds
PIPELINE_REQUEST_TIMEOUT = 30  # seconds

# Progress Configuration
INGESTING_TICK = 0.3  # seconds between animation steps
INGESTING_STEP = 2
INGESTING_CEILING = 90
REQUEST_SENT_PROGRESS = 5
AWAITING_UPDATES_PROGRESS = 10

# Datastore tables
JOBS_TABLE = "pipeline_jobs"
FILES_TABLE = "files"
WORKSPACE_USERS_TABLE = "workspace_users"

# Cache Configuration
# Resolved user -> workspace ids, cleared on sign-out
WORKSPACE_CACHE = TTLCache(maxsize=100, ttl=3600)  # 1 hour cache

# Directory Configuration
BASE_DIR = Path(__file__).parent.parent.parent
GENERATED_DIR = BASE_DIR / "generated"
LOGS_DIR = GENERATED_DIR / "logs"

# Ensure directories exist
GENERATED_DIR.mkdir(exist_ok=True)
LOGS_DIR.mkdir(exist_ok=True)

# Run timestamp
RUN_TIMESTAMP = datetime.now().strftime("%Y%m%d_%H%M%S")
