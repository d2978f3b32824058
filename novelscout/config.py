"""Runtime configuration for the novelscout service.

Every setting is read once from the environment at import time. Components
take these values as constructor defaults, so tests and embedding code can
override them without touching the environment.
"""

from __future__ import annotations

import os
from pathlib import Path


def _flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATA_DIR = Path(os.environ.get("NOVELSCOUT_DATA_DIR", "/mnt/data/novelscout"))
DB_PATH = os.environ.get("NOVELSCOUT_DB", str(DATA_DIR / "novelscout.db"))

# Optional JSON file holding a list of extra source definitions.
SOURCES_FILE = os.environ.get("NOVELSCOUT_SOURCES_FILE", "")
# "latency" tries the fastest healthy source first, "registration" keeps insertion order.
SOURCE_ORDERING = os.environ.get("NOVELSCOUT_SOURCE_ORDERING", "latency")

CACHE_TTL = int(os.environ.get("CACHE_TTL", "3600"))
CACHE_MAX_ENTRIES = int(os.environ.get("CACHE_MAX_ENTRIES", "1024"))
REDIS_URL = os.environ.get("REDIS_URL", "")

HEALTH_INTERVAL = float(os.environ.get("HEALTH_INTERVAL", str(30 * 60)))
PROBE_TIMEOUT = min(float(os.environ.get("PROBE_TIMEOUT", "5")), 5.0)
MONITOR_ENABLED = _flag("NOVELSCOUT_MONITOR", True)

FETCH_TIMEOUT = float(os.environ.get("FETCH_TIMEOUT", "30"))
FETCH_RETRIES = int(os.environ.get("FETCH_RETRIES", "2"))
FETCH_BACKOFF = float(os.environ.get("FETCH_BACKOFF", "0"))
FETCH_WAIT_UNTIL = os.environ.get("FETCH_WAIT_UNTIL", "networkidle")

BROWSER_HEADLESS = _flag("BROWSER_HEADLESS", True)
BROWSER_LAUNCH_RETRIES = int(os.environ.get("BROWSER_LAUNCH_RETRIES", "2"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "3000"))

# Some sites return a 403 or a stripped page to clients without a browser UA.
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
}
