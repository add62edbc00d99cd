"""
Pytest configuration and shared fixtures.

Provides the scripted hg runner, a recording progress sink, and repository
directories used across the test suite.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from hg_output import ScriptedRunner, no_proxy

from hgsync.core.config import HgSyncConfig, clear_cache
from hgsync.core.progress import RecordingProgress
from hgsync.core.repository import HgRepository


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    """Each test sees freshly loaded configuration."""
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def progress() -> RecordingProgress:
    return RecordingProgress()


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    """A directory that looks like an hg repository (has .hg/store)."""
    path = tmp_path / "repo"
    (path / ".hg" / "store").mkdir(parents=True)
    return path


@pytest.fixture
def config() -> HgSyncConfig:
    return HgSyncConfig()


@pytest.fixture
def repo(
    repo_dir: Path,
    progress: RecordingProgress,
    runner: ScriptedRunner,
    config: HgSyncConfig,
) -> HgRepository:
    """Handle on repo_dir whose hg calls go to the scripted runner."""
    return HgRepository(repo_dir, progress, config=config, runner=runner, proxy_discovery=no_proxy)
