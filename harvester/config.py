"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
DB_PATH = DATA_DIR / "harvester.db"
LOG_DIR = DATA_DIR / "logs"

# HTTP service
SERVICE_HOST = os.getenv("SERVICE_HOST", "127.0.0.1")
SERVICE_PORT = int(os.getenv("SERVICE_PORT", "8025"))

# Browser
BROWSER_ENGINE = os.getenv("BROWSER_ENGINE", "chromium").lower()  # chromium | camoufox
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
BROWSER_LAUNCH_TIMEOUT = int(os.getenv("BROWSER_LAUNCH_TIMEOUT", "30000"))
NAVIGATION_TIMEOUT = int(os.getenv("NAVIGATION_TIMEOUT", "60000"))
MAX_CONCURRENT_PAGES = int(os.getenv("MAX_CONCURRENT_PAGES", "3"))
BROWSER_USER_AGENT = os.getenv("BROWSER_USER_AGENT", "")
CHROME_VERSION = os.getenv("CHROME_VERSION", "")
DEFAULT_CHROME_VERSION = "139.0.0.0"

# Authentication
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "3"))
STATUS_PROBE_TIMEOUT = 3000  # ms per logged-in probe
LOGIN_WAIT_TIMEOUT = 15000
LOGIN_SETTLE_TIMEOUT = 20000

# Crawling
DEFAULT_MAX_PAGES = int(os.getenv("DEFAULT_MAX_PAGES", "10"))
MAX_PAGES_HARD_CAP = 50
DEFAULT_MAX_ITEMS = int(os.getenv("DEFAULT_MAX_ITEMS", "2000"))
REQUEST_DELAY = float(os.getenv("REQUEST_DELAY", "1.0"))  # seconds
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))  # seconds
REQUEST_RETRIES = int(os.getenv("REQUEST_RETRIES", "3"))

# Result persistence
RESULT_BATCH_SIZE = int(os.getenv("RESULT_BATCH_SIZE", "100"))
RESULT_BATCH_PAUSE = 0.1  # seconds between batches
SHUTDOWN_GRACE_PERIOD = 30.0


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
