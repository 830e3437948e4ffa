"""Static configuration for deliveryscope.

All user-editable settings (matching, storage, provider cache, logging) live
in a single JSON file for quick edits without touching Python.
"""

import json
import os

from dotenv import load_dotenv

from deliveryscope.core.config import DEFAULT_BATCH_SIZE, DEFAULT_THRESHOLD, MatchingConfig

load_dotenv()

# config.json is looked up in the working directory unless overridden.
CONFIG_PATH = os.path.abspath(os.getenv("DELIVERYSCOPE_CONFIG", "config.json"))

# Relative paths in the config resolve against the config file's directory.
PROJECT_ROOT = os.path.dirname(CONFIG_PATH)


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Matching controls for the reconciliation engine.
# - THRESHOLD: minimum similarity in (0, 1] to accept a match
# - BATCH_SIZE: internal records per batch
# - CONSUMPTION_MODE: "per_batch" or "global" external-record consumption
# - WORKERS: thread pool size for per_batch runs
_matching = _CONFIG.get("matching", {})
THRESHOLD = float(_matching.get("threshold", DEFAULT_THRESHOLD))
BATCH_SIZE = int(_matching.get("batch_size", DEFAULT_BATCH_SIZE))
CONSUMPTION_MODE = _matching.get("consumption_mode", "per_batch")
WORKERS = int(_matching.get("workers", 1))

MATCHING = MatchingConfig(
    threshold=THRESHOLD,
    batch_size=BATCH_SIZE,
    consumption_mode=CONSUMPTION_MODE,
    workers=WORKERS,
)

# Where to store the SQLite message log.
_storage = _CONFIG.get("storage", {})
DB_PATH = resolve_path(_storage.get("db_path", "deliveryscope.db"))

# Provider history is cached per phone number and window.
_external = _CONFIG.get("external", {})
CACHE_TTL_SECONDS = float(_external.get("cache_ttl_seconds", 300))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
