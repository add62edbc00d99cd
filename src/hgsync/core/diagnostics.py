"""
Diagnostic dumps for support requests.

Each section is gathered on its own: a section that fails is reported
through the progress sink and the dump carries on with the next one.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from hgsync import __version__
from hgsync.core.errors import HgError
from hgsync.core.progress import Progress

if TYPE_CHECKING:
    from hgsync.core.repository import HgRepository

logger = logging.getLogger(__name__)

SEPARATOR = "---------------------------------------------------"


def _section(progress: Progress, title: str | None, gather: Callable[[], str]) -> None:
    if title:
        progress.write_message(title)
    try:
        progress.write_message(gather())
    except (HgError, OSError) as e:
        logger.debug("Diagnostic section %s failed: %s", title, e)
        progress.write_error("Could not get {0}: {1}", title or "section", e)
    progress.write_message(SEPARATOR)


def _executable_location(repository: HgRepository) -> str:
    executable = repository.config.hg_executable
    return shutil.which(executable) or executable


def gather_local_diagnostics(repository: HgRepository, progress: Progress) -> None:
    """Write version, heads, status, recent log, config, manifest, ignore rules and hgrc, then verify."""
    diagnostic_seconds = repository.timeouts.diagnostic_seconds

    def query(subcommand: str, *args: str) -> str:
        return repository.query(subcommand, *args, timeout_seconds=diagnostic_seconds)

    progress.write_status("Gathering diagnostics data...")
    _section(progress, None, lambda: query("version"))
    progress.write_message("Using Mercurial at: {0}", _executable_location(repository))
    progress.write_message("hgsync version: {0}", __version__)
    progress.write_message("path = {0}", repository.path)
    progress.write_message(SEPARATOR)

    _section(progress, "heads:", lambda: query("heads"))
    try:
        if len(repository.get_heads()) > 1:
            progress.write_error(
                "This project has some changesets which have not been merged together. "
                "If this is still true after a sync, you will need expert help to get things merging again."
            )
    except HgError as e:
        progress.write_exception(e)

    _section(progress, "status:", lambda: query("status"))
    _section(progress, "Log of last 100 changesets:", lambda: _recent_log(repository, query))
    _section(progress, "config:", lambda: query("showconfig"))
    _section(progress, "manifest:", lambda: query("manifest"))
    _section(progress, ".hgignore", lambda: _read_or(Path(repository.path) / ".hgignore", "No .hgignore found"))
    _section(progress, "hgrc", lambda: (Path(repository.path) / ".hg" / "hgrc").read_text(encoding="utf-8"))

    try:
        repository.check_integrity()
    except HgError as e:
        progress.write_exception(e)

    progress.write_status("Done.")


def gather_remote_diagnostics(repository: HgRepository, url: str, progress: Progress) -> None:
    """Write what can be known locally when a remote project fails (e.g. a failed clone)."""
    diagnostic_seconds = repository.timeouts.diagnostic_seconds

    progress.write_status(
        "Gathering diagnostics data (can't actually tell you anything about the remote server)..."
    )
    _section(progress, None, lambda: repository.query("version", timeout_seconds=diagnostic_seconds))
    progress.write_message("Using Mercurial at: {0}", _executable_location(repository))
    progress.write_message("hgsync version: {0}", __version__)
    progress.write_message("remote url = {0}", url)
    progress.write_message(SEPARATOR)
    _section(progress, "config:", lambda: repository.query("showconfig", timeout_seconds=diagnostic_seconds))
    progress.write_status("Done.")


def _recent_log(repository: HgRepository, query: Callable[..., str]) -> str:
    # Graph log where the installed hg supports it
    try:
        result = repository.execute(
            repository.timeouts.diagnostic_seconds, "log", "-G", "-l", "100"
        )
        return result.standard_output
    except HgError:
        return query("log", "-l", "100")


def _read_or(path: Path, fallback: str) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return fallback
