"""Static configuration for telemirror.

Bootstrap settings (paths, timers, logging) and the initial runtime
configuration live in a single JSON file. Sources, filter rules and publish
intervals are copied into the database on first start and edited there
afterwards; the running process picks those edits up without a restart.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("TELEMIRROR_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database (archive, queue, runtime config).
_database = _CONFIG.get("database", {})
DB_PATH = _project_path(_database.get("path", "data/telemirror.db"))

# Published files are copied to MEDIA_DIR/YYYY/MM/<fingerprint>.<ext>.
_media = _CONFIG.get("media", {})
MEDIA_STORE_FILES = bool(_media.get("store_files", True))
MEDIA_DIR = _project_path(_media.get("directory", "media"))

# Release scheduler timers.
# - QUEUE_POLL_SECONDS: how often the queue looks for a due record
# - PUBLISH_TIMEOUT_SECONDS: a publish taking longer is recorded as failed
# - SHUTDOWN_GRACE_SECONDS: how long shutdown waits for an in-flight publish
_queue = _CONFIG.get("queue", {})
QUEUE_POLL_SECONDS = float(_queue.get("poll_seconds", 5))
PUBLISH_TIMEOUT_SECONDS = float(_queue.get("publish_timeout_seconds", 60))
SHUTDOWN_GRACE_SECONDS = float(_queue.get("shutdown_grace_seconds", 30))

# How often the running process checks the database reload flag.
_reload = _CONFIG.get("reload", {})
RELOAD_POLL_SECONDS = float(_reload.get("poll_seconds", 5))

# Initial runtime configuration, written to the database by import-config
# or on first start when the database has no configuration yet.
SEED = _CONFIG.get("seed", {})

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
