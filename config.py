import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# User config: loaded from ~/.scatterview/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".scatterview" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('wide_variables.districts', [])"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Base directory for logs and exported figures.
# Priority: SCATTERVIEW_DIR env var > "data_dir" config key > ~/.scatterview

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``SCATTERVIEW_DIR`` environment variable (highest, useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.scatterview`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("SCATTERVIEW_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".scatterview"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


# ---- Data source ----------------------------------------------------------------
# Endpoint may be private (signed CDN prefix), so the env var wins over config.
ENDPOINT = os.getenv("SCATTERVIEW_ENDPOINT") or get("endpoint")
PATH_STYLE = get("path_style", "nested")  # "nested" (<collection>/<var>.csv) or "flat" (<collection>-<var>.csv)
FETCH_TIMEOUT = get("fetch_timeout", 30)  # seconds per resource
FETCH_MAX_WORKERS = get("fetch_max_workers", 4)

# Columns of each collection's shared "meta" file, in file order.
# Position 0 echoes the id and is never stored as a variable.
_DEFAULT_WIDE_VARIABLES = {
    "counties": ["id", "name", "lat", "lon", "all_avg", "all_ses", "sz"],
    "districts": ["id", "name", "lat", "lon", "all_avg", "all_ses", "sz"],
    "schools": ["id", "name", "lat", "lon", "all_avg", "frl_pct", "sz"],
}
WIDE_VARIABLES: dict = get("wide_variables", _DEFAULT_WIDE_VARIABLES)

# Collections whose resources are only published per region
REGIONAL_COLLECTIONS = get("regional_collections", ["schools"])


# ---- View behaviour -------------------------------------------------------------
HOVER_CLEAR_DELAY = get("hover_clear_delay", 0.2)  # seconds
SIZE_RANGE = tuple(get("size_range", [6, 48]))  # marker diameter in px
SIZE_EXPONENT = get("size_exponent", 1)
DEFAULT_MARKER_SIZE = get("default_marker_size", 10)
