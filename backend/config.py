import os
from pathlib import Path

BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.environ.get("WORKFLOW_DATA_DIR", BASE_DIR / "data"))
OUTPUTS_DIR = Path(os.environ.get("WORKFLOW_OUTPUTS_DIR", BASE_DIR / "outputs"))
WORKFLOWS_DIR = Path(os.environ.get("WORKFLOW_DEFINITIONS_DIR", BASE_DIR / "workflows"))

WORKFLOW_DB_PATH = DATA_DIR / "workflows.duckdb"
JOBS_DB_PATH = DATA_DIR / "execution_jobs.duckdb"

# Public prefix for persisted assets served by the /outputs route
OUTPUTS_URL_PREFIX = "/outputs"
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "")

THUMBNAIL_WIDTH = 800
THUMBNAIL_QUALITY = 80
DOWNLOAD_TIMEOUT = 30.0
SUPPORTED_IMAGE_FORMATS = {'JPEG', 'PNG', 'WEBP', 'BMP', 'GIF'}

# Provider credentials and endpoints
VAP_API_KEY = os.environ.get("VAP_API_KEY", "")
VAP_BASE_URL = os.environ.get("VAP_BASE_URL", "https://api.vapagent.com/v3")
PIAPI_API_KEY = os.environ.get("PIAPI_API_KEY", "")
PIAPI_BASE_URL = os.environ.get("PIAPI_BASE_URL", "https://api.piapi.ai/api/v1")
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.environ.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
DEFAULT_LLM_MODEL = "claude-sonnet-4-5"

# Polling defaults: fixed 3s interval, 60 attempts (~3 minutes)
POLL_INTERVAL = float(os.environ.get("WORKFLOW_POLL_INTERVAL", "3.0"))
POLL_MAX_ATTEMPTS = int(os.environ.get("WORKFLOW_POLL_MAX_ATTEMPTS", "60"))
POLL_BACKOFF = float(os.environ.get("WORKFLOW_POLL_BACKOFF", "1.0"))
POLL_MAX_INTERVAL = 30.0

# Finished job checkpoints older than this are dropped at startup; 0 keeps them all
JOB_RETENTION_DAYS = int(os.environ.get("WORKFLOW_JOB_RETENTION_DAYS", "7"))

# Batch jobs poll in the background until every task settles
BATCH_REFRESH_INTERVAL = float(os.environ.get("WORKFLOW_BATCH_REFRESH_INTERVAL", "5.0"))

# Provider used by image-generator nodes
IMAGE_PROVIDER = os.environ.get("WORKFLOW_IMAGE_PROVIDER", "vap")

# Whole-run deadline for workflow jobs in seconds; 0 disables it
WORKFLOW_TIMEOUT = float(os.environ.get("WORKFLOW_TIMEOUT", "0")) or None

MAX_REQUEST_SIZE = 16 * 1024 * 1024

DATA_DIR.mkdir(parents=True, exist_ok=True)
OUTPUTS_DIR.mkdir(parents=True, exist_ok=True)
