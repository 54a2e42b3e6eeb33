"""Static configuration for deadwatch.

All operator-editable settings (servers, channels, sweep timing, rewards,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (or a .env file) and are referenced by name.
"""

import json
import os

from dotenv import load_dotenv

from core.config import parse_dispatch_config, parse_scheduler_config, parse_servers

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Variables already set in the process environment win over the .env file.
ENV_FILE = os.getenv("DEADWATCH_ENV_FILE") or os.path.join(PROJECT_ROOT, ".env")
load_dotenv(ENV_FILE, override=False)

# config.json sits next to the project root unless DEADWATCH_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("DEADWATCH_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, operator-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Registered servers; cursor state is keyed by each entry's server_id.
SERVERS = parse_servers(_CONFIG.get("servers", []))

# Sweep timing:
# - server_log_interval / death_log_interval: seconds between ticks
# - read_timeout: per remote read, the server is retried next tick on expiry
# - max_concurrency: servers processed at once within a tick
SCHEDULER = parse_scheduler_config(_CONFIG.get("scheduler", {}))

# Kill reward and join/leave batching.
DISPATCH = parse_dispatch_config(_CONFIG.get("dispatch", {}))

# Where to store the SQLite database.
_storage = _CONFIG.get("storage", {})
DB_PATH = _resolve_path(_storage.get("db_path", "deadwatch.db"))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
