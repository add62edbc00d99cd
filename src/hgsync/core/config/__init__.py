"""
Configuration models and loading.

Runtime settings use Pydantic models with multi-layer merging
(defaults < user < project < env vars). The per-repository hg settings
file (.hg/hgrc) is read and written through HgrcStore.
"""

from .env import load_layered_env
from .hgrc import DEFAULT_SYNC_SECTION, HgrcStore
from .loader import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import HgSyncConfig, NetworkConfig, TimeoutConfig

__all__ = [
    # Models
    "HgSyncConfig",
    "NetworkConfig",
    "TimeoutConfig",
    # hgrc
    "HgrcStore",
    "DEFAULT_SYNC_SECTION",
    # Loader functions
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
