"""
hgsync settings: built-in defaults, then JSON files, then HGSYNC_* variables.

Later layers win:
    defaults < ~/.config/hgsync/config.json < <repo>/.hgsync.json < environment
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import HgSyncConfig

logger = logging.getLogger(__name__)

# One load per process unless a caller asks for a fresh read
_config_cache: HgSyncConfig | None = None


def get_xdg_config_home() -> Path:
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/hgsync/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "hgsync" / "config.json"


def get_project_config_path(repository_path: Path | None = None) -> Path:
    """Path to .hgsync.json at the repository root."""
    if repository_path is None:
        repository_path = Path.cwd()
    return repository_path / ".hgsync.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Merge override into a copy of base, section by section.

    Nested sections such as "timeouts" are merged key by key, so a file that
    sets one timeout keeps the defaults for the others.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Read one settings layer.

    A missing file, bad JSON or a top-level value that is not an object all
    yield None, and the layer is skipped.
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        # Config system should be resilient; fall back to other layers
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def _set_int(result: dict[str, Any], section: str, key: str, env_name: str) -> None:
    raw = os.environ.get(env_name)
    if not raw:
        return
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s', ignoring", env_name, raw)
        return
    if value < 1:
        logger.warning("%s must be >= 1, got %d, ignoring", env_name, value)
        return
    result.setdefault(section, {})[key] = value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        HGSYNC_HG - overrides hg_executable
        HGSYNC_DIAGNOSTICS - overrides diagnostics
        HGSYNC_LOCAL_TIMEOUT - overrides timeouts.local_seconds
        HGSYNC_REMOTE_TIMEOUT - overrides timeouts.remote_seconds
        HGSYNC_PROXY_PROBE_URL - overrides network.proxy_probe_url

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    if hg := os.environ.get("HGSYNC_HG"):
        result["hg_executable"] = hg

    if diagnostics_str := os.environ.get("HGSYNC_DIAGNOSTICS"):
        result["diagnostics"] = diagnostics_str.lower() not in ("false", "0", "")

    _set_int(result, "timeouts", "local_seconds", "HGSYNC_LOCAL_TIMEOUT")
    _set_int(result, "timeouts", "remote_seconds", "HGSYNC_REMOTE_TIMEOUT")

    if probe_url := os.environ.get("HGSYNC_PROXY_PROBE_URL"):
        result.setdefault("network", {})["proxy_probe_url"] = probe_url

    return result


def load_config(repository_path: Path | None = None, use_cache: bool = True) -> HgSyncConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (HGSYNC_*)
        2. Project config (.hgsync.json)
        3. User config (~/.config/hgsync/config.json)
        4. Defaults

    Args:
        repository_path: Repository to load .hgsync.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated HgSyncConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged: dict[str, Any] = {}

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(repository_path)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = HgSyncConfig(**merged)
    _config_cache = config

    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
