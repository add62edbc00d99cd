"""
Shared plumbing for CLI commands.

The main callback stores the global options in ctx.obj; commands call
open_repository() to get a handle and run their work inside guarded() so
engine errors become clean messages and exit codes, and Ctrl-C cancels the
running hg instead of killing it mid-transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from hgsync.cli.errors import ExitCode, report_error
from hgsync.core.addresses import RepositoryAddress
from hgsync.core.config import HgSyncConfig, load_config
from hgsync.core.errors import ConfigurationError, HgError, RepositoryNotFound
from hgsync.core.interrupt import InterruptHandler
from hgsync.core.progress import ConsoleProgress
from hgsync.core.repository import HgRepository

logger = logging.getLogger(__name__)

console = Console()


def options(ctx: typer.Context) -> dict[str, object]:
    return ctx.obj if isinstance(ctx.obj, dict) else {}


def repository_path(ctx: typer.Context) -> Path:
    return Path(str(options(ctx).get("repo") or Path.cwd())).resolve()


def make_progress(ctx: typer.Context) -> ConsoleProgress:
    return ConsoleProgress(console, verbose=bool(options(ctx).get("verbose")))


def load_settings(ctx: typer.Context) -> HgSyncConfig:
    """
    Settings for the repository named by --repo.

    Raises:
        ConfigurationError: If a settings file holds invalid values.
    """
    path = repository_path(ctx)
    try:
        return load_config(path, use_cache=False)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid hgsync settings for {path}:\n{e}") from e


def open_repository(ctx: typer.Context, progress: ConsoleProgress) -> HgRepository:
    """
    Handle on the repository named by --repo (default: current directory).

    Raises:
        RepositoryNotFound: If the directory holds no .hg.
    """
    path = repository_path(ctx)
    if not (path / ".hg").is_dir():
        raise RepositoryNotFound(f"There is no hg repository at {path}")
    return HgRepository(path, progress, config=load_settings(ctx))


def resolve_address(repo: HgRepository, alias_or_uri: str) -> RepositoryAddress:
    """Look an alias up in [paths]; anything else is taken as a URI."""
    for address in repo.get_repository_paths_in_hgrc():
        if address.name == alias_or_uri:
            return address
    return RepositoryAddress.create(alias_or_uri, alias_or_uri)


@contextmanager
def guarded(progress: ConsoleProgress) -> Iterator[None]:
    """Cancel hg on Ctrl-C and turn engine errors into exit codes."""
    with InterruptHandler(progress):
        try:
            yield
        except HgError as e:
            logger.debug("Command failed", exc_info=True)
            raise typer.Exit(report_error(e)) from e


def fail(code: ExitCode = ExitCode.GENERAL_ERROR) -> None:
    raise typer.Exit(code)
