"""
Environment file layering for hgsync.

Variables such as HGSYNC_HG or HGSYNC_REMOTE_TIMEOUT can live in .env files,
read in this order (later layers win):

1. ~/.config/hgsync/.env        per-user defaults
2. <repo>/.env, <repo>/.env.local
3. <repo>/.hg/hgsync.env        private to this clone, never committed

A variable exported in the shell is never overridden by any file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def user_env_file() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "hgsync" / ".env"


def repository_env_files(repository_path: Path) -> list[Path]:
    return [
        repository_path / ".env",
        repository_path / ".env.local",
        repository_path / ".hg" / "hgsync.env",
    ]


def _values(paths: Iterable[Path]) -> dict[str, str]:
    merged: dict[str, str] = {}
    for path in paths:
        path = Path(path)
        if not path.is_file():
            continue
        for key, value in dotenv_values(path).items():
            # A bare KEY line without '=' has no value
            if key and value is not None:
                merged[key] = value
        logger.debug("Read environment file %s", path)
    return merged


def load_layered_env(
    *,
    repository_path: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    repository_env_paths: Iterable[Path] | None = None,
) -> dict[str, str]:
    """
    Copy variables from the layered .env files into os.environ.

    Args:
        repository_path: Repository root for the default repository files (cwd if None)
        user_env_paths: Replaces the default user file
        repository_env_paths: Replaces the default repository files

    Returns:
        The variables that were set.
    """
    root = repository_path if repository_path is not None else Path.cwd()
    user_paths = [user_env_file()] if user_env_paths is None else list(user_env_paths)
    repo_paths = repository_env_files(root) if repository_env_paths is None else list(repository_env_paths)

    layered = _values(user_paths)
    layered.update(_values(repo_paths))

    applied = {key: value for key, value in layered.items() if key not in os.environ}
    os.environ.update(applied)
    return applied
