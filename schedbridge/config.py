"""
Runtime configuration for schedbridge.

Every constant can be overridden with an environment variable named
``SCHEDBRIDGE_<CONSTANT>``; the bridge and datacenter also accept per-instance
keyword overrides.
"""

import logging
import os


def _env(name, default, cast=str):
    raw = os.environ.get(f"SCHEDBRIDGE_{name}")
    if raw is None or raw == "":
        return default
    return cast(raw)


# --- Configuration Constants ---
CONTROL_PLANE_URL = _env("CONTROL_PLANE_URL", "http://localhost:8080")
REQUEST_TIMEOUT = _env("REQUEST_TIMEOUT", 10.0, float)   # Wall-clock seconds per HTTP call

# Bridge timing (simulated time units)
RETRY_DELAY = _env("RETRY_DELAY", 1.0, float)            # Delay before re-sending a failed request
MAX_RETRIES = _env("MAX_RETRIES", 10, int)               # Retries before the affected tasks are failed
POLL_INTERVAL = _env("POLL_INTERVAL", 0.5, float)        # Status poll cadence (polling variant, drain sweep)
MAX_POLL_ATTEMPTS = _env("MAX_POLL_ATTEMPTS", 120, int)
RESPONSE_POLL_INTERVAL = _env("RESPONSE_POLL_INTERVAL", 0.1, float)  # Threaded mode: future check cadence

# Datacenter timing
DESTROY_DELAY = _env("DESTROY_DELAY", 1.0, float)        # Grace period before an idle node is torn down
SCHEDULING_INTERVAL = _env("SCHEDULING_INTERVAL", 30.0, float)  # Periodic processing tick while tasks run

# Wire endpoints
NODES_PATH = "/nodes"
BATCH_PODS_PATH = "/schedule-pods"
PODS_PATH = "/pods"
POD_STATUS_PATH = "/pods/{task_id}/status"
UPDATE_STATE_PATH = "/pods/update-state"
RESET_PATH = "/reset"

LOG_LEVEL = _env("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level=None):
    """Install a basic root handler; meant for scripts, the library never calls it."""
    level = level or LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
