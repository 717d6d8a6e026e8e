"""Load application settings from config/settings.yaml."""

from pathlib import Path
from typing import Any

import yaml

_DEFAULTS: dict[str, Any] = {
    "forest": {
        "config": "forest.yaml",
        # Seconds between forest.yaml change checks; 0 disables hot reload
        "reload_interval": 5.0,
    },
    "river": {
        "db_path": "data/river.db",
        "poll_interval": 1.0,
        "batch_size": 16,
        "visibility_timeout": 60.0,
        "busy_timeout": 5000,
    },
    "dispatcher": {
        "group": "forest",
        "subject_concurrency": 1,
        # subject pattern -> concurrency override, e.g. {"lead.>": 4}
        "subject_limits": {},
        "max_attempts": 3,
        "retry_base": 1.0,
        "retry_max_delay": 60.0,
        "max_hops": 16,
        "dedup_ttl": 3600.0,
        "dedup_max_entries": 100000,
        "lane_idle_timeout": 30.0,
        "max_in_flight": 1000,
    },
    "treehouse": {
        "timeout": 10.0,
        "python": None,
    },
    "nim": {
        "timeout": 60.0,
        "reparse_retries": 0,
    },
    "providers": {},
    "brains": {},
    "logging": {
        "file": "logs/forest.log",
        "level": "INFO",
        "log_to_console": True,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
    },
}

_cached: dict[str, Any] | None = None


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base recursively. Mutates base."""
    for key, value in overlay.items():
        if value is None:
            continue
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_default_settings() -> dict[str, Any]:
    """Return a deep copy of default settings."""
    return _deep_copy_nested(_DEFAULTS)


def get_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested value by dot path (e.g. 'dispatcher.max_attempts')."""
    current: Any = settings
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def reload_settings() -> None:
    """Clear the settings cache."""
    global _cached
    _cached = None


def load_settings(config_dir: Path | None = None) -> dict[str, Any]:
    """Load settings from config/settings.yaml. Returns merged defaults + file values."""
    global _cached
    if _cached is not None:
        return _cached

    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    path = config_dir / "settings.yaml"

    result = get_default_settings()

    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                _deep_merge(result, data)
        except (yaml.YAMLError, OSError):
            pass

    _cached = result
    return result


def _deep_copy_nested(obj: Any) -> Any:
    """Return a deep copy of nested dicts/lists for defaults."""
    if isinstance(obj, dict):
        return {k: _deep_copy_nested(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_deep_copy_nested(x) for x in obj]
    return obj
