"""
Helpers for reading the channel catalog and process-level settings.
"""

from __future__ import annotations

import json
import os
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional

CONFIG_PATH = Path(__file__).parent / "config" / "channels.json"
CONTAINER_CONFIG_PATH = Path("/app/config/channels.json")

# Cache lifetimes (seconds)
OFFICIAL_CACHE_TTL = 24 * 60 * 60
CUSTOM_CACHE_TTL = 60 * 60
BUMPER_CACHE_TTL = 24 * 60 * 60
STORE_PLAYLISTS_TTL = 60 * 60
YEAR_CACHE_TTL = 7 * 24 * 60 * 60

# Upstream fetch limits
OFFICIAL_FETCH_TIMEOUT = 60.0
CUSTOM_FETCH_TIMEOUT = 15.0
CUSTOM_SOURCE_MAX_ITEMS = 100
CUSTOM_POOL_CAP = 100
RANDOM_CHANNEL_SAMPLE = 8
RANDOM_CHANNEL_PER_SOURCE = 50
FANOUT_WIDTH = 8
MAX_BUMPER_DURATION = 90

DEFAULT_SUPPRESSION_THRESHOLD = 50
DEFAULT_SUPPRESSION_RESET_DAYS = 30

CHANNEL_KINDS = {"music", "short_form", "live", "random"}
BUMPER_PATTERNS = {"positional", "short_form"}
SHORT_FORM_BLOCK_SIZE = 3
DEFAULT_BLOCK_SIZE = 12

PLAYLIST_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{13,}$")

# Cache for settings and path resolution
_settings_cache: Optional[Dict[str, Any]] = None
_settings_mtime: float = 0.0
_config_path_cache: Optional[Path] = None
_channels_index: Dict[str, Dict[str, Any]] = {}


def _resolve_config_path() -> Path:
    """Resolve catalog path with caching."""
    global _config_path_cache

    if _config_path_cache is not None:
        return _config_path_cache

    override = os.environ.get("VIDBLOCK_CHANNELS_CONFIG")
    if override:
        _config_path_cache = Path(override).expanduser()
        return _config_path_cache

    if CONTAINER_CONFIG_PATH.exists():
        _config_path_cache = CONTAINER_CONFIG_PATH
        return _config_path_cache

    _config_path_cache = CONFIG_PATH
    return _config_path_cache


def invalidate_settings_cache() -> None:
    """Drop cached catalog state so the next read goes back to disk."""
    global _settings_cache, _settings_mtime, _channels_index, _config_path_cache
    _settings_cache = None
    _settings_mtime = 0.0
    _channels_index = {}
    _config_path_cache = None


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def youtube_api_key() -> Optional[str]:
    return os.environ.get("YOUTUBE_API_KEY") or None


def imvdb_api_key() -> Optional[str]:
    return os.environ.get("IMVDB_API_KEY") or None


def database_url() -> Optional[str]:
    """Return the store URL, or None when the store backend is disabled."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        return None
    if not _env_flag("VIDBLOCK_USE_DATABASE", True):
        return None
    return url


def prefetch_enabled() -> bool:
    return _env_flag("VIDBLOCK_PREFETCH", True)


def suppression_threshold() -> int:
    return max(1, _env_int("VIDBLOCK_SUPPRESSION_THRESHOLD", DEFAULT_SUPPRESSION_THRESHOLD))


def suppression_reset_days() -> int:
    return max(1, _env_int("VIDBLOCK_SUPPRESSION_RESET_DAYS", DEFAULT_SUPPRESSION_RESET_DAYS))


def cors_origins() -> List[str]:
    raw = os.getenv(
        "CORS_ORIGINS", "http://localhost:4200,http://localhost:4201,http://localhost:3000"
    )
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def is_valid_playlist_id(playlist_id: Any) -> bool:
    """Opaque source ids are alphanumeric plus dash/underscore, 13+ chars."""
    return isinstance(playlist_id, str) and bool(PLAYLIST_ID_PATTERN.match(playlist_id))


def slugify(text: str, fallback: str = "channel") -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return cleaned or fallback


def _default_kind(channel_id: str) -> str:
    if channel_id == "shows":
        return "short_form"
    if channel_id in {"live", "random"}:
        return channel_id
    return "music"


def normalize_channel(channel: Dict[str, Any]) -> Dict[str, Any]:
    normalized = deepcopy(channel) if isinstance(channel, dict) else {}

    name = str(normalized.get("name") or normalized.get("id") or "Channel").strip()
    channel_id = str(normalized.get("id") or slugify(name))
    normalized["id"] = channel_id
    normalized["name"] = name or channel_id
    normalized["icon"] = str(normalized.get("icon") or "")

    kind = normalized.get("kind") or _default_kind(channel_id)
    if kind not in CHANNEL_KINDS:
        kind = "music"
    normalized["kind"] = kind

    default_size = SHORT_FORM_BLOCK_SIZE if kind == "short_form" else DEFAULT_BLOCK_SIZE
    try:
        block_size = int(normalized.get("block_size") or default_size)
    except (TypeError, ValueError):
        block_size = default_size
    normalized["block_size"] = max(1, block_size)

    pattern = normalized.get("bumper_pattern")
    if pattern not in BUMPER_PATTERNS:
        pattern = "short_form" if kind == "short_form" else "positional"
    normalized["bumper_pattern"] = pattern

    normalized["unlockable"] = bool(normalized.get("unlockable", False))
    normalized["include_in_random"] = bool(
        normalized.get(
            "include_in_random", kind == "music" and not normalized["unlockable"]
        )
    )

    # Entries are either bare ids or {"id", "label"} objects
    playlists = normalized.get("playlists") or []
    cleaned: List[str] = []
    labels: Dict[str, str] = {}
    for entry in playlists:
        if isinstance(entry, dict):
            playlist_id = str(entry.get("id") or "").strip()
            label = str(entry.get("label") or "").strip()
        else:
            playlist_id = str(entry).strip()
            label = ""
        if playlist_id and playlist_id not in labels:
            cleaned.append(playlist_id)
            labels[playlist_id] = label or f"{name} mix"
    normalized["playlists"] = cleaned
    normalized["playlist_labels"] = labels

    return normalized


def normalize_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        data = {}

    channels = data.get("channels")
    if not isinstance(channels, list):
        channels = []

    normalized = deepcopy(data)
    normalized["channels"] = [
        normalize_channel(channel) for channel in channels if isinstance(channel, dict)
    ]
    bumpers = data.get("bumper_playlists") or []
    normalized["bumper_playlists"] = [str(pid).strip() for pid in bumpers if str(pid).strip()]
    return normalized


def validate_settings(data: Dict[str, Any]) -> None:
    if "channels" not in data or not isinstance(data["channels"], list):
        raise ValueError("Catalog must include a 'channels' list.")
    if not data["channels"]:
        raise ValueError("At least one channel must be configured.")


def load_settings() -> Dict[str, Any]:
    """Load the channel catalog with mtime-based caching."""
    global _settings_cache, _settings_mtime, _channels_index

    config_path = _resolve_config_path()

    if config_path.exists():
        try:
            current_mtime = config_path.stat().st_mtime
        except OSError:
            current_mtime = 0.0
    else:
        current_mtime = 0.0

    # Return cached version if file hasn't changed
    if _settings_cache is not None and abs(current_mtime - _settings_mtime) < 0.001:
        return _settings_cache

    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    else:
        raw = {}

    normalized = normalize_settings(raw)
    validate_settings(normalized)

    _settings_cache = normalized
    _settings_mtime = current_mtime

    # Build channel index for O(1) lookups
    _channels_index = {ch["id"]: ch for ch in normalized["channels"]}

    return normalized


def list_channels() -> List[Dict[str, Any]]:
    return load_settings().get("channels", [])


def get_channel(channel_id: str) -> Optional[Dict[str, Any]]:
    """Get channel by ID with O(1) lookup using cached index."""
    load_settings()
    return _channels_index.get(channel_id)


def bumper_playlists() -> List[str]:
    return list(load_settings().get("bumper_playlists", []))
