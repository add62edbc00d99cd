"""
hgsync CLI - read-only and maintenance commands.

log, heads, locks, reach and diagnose.
"""

import typer
from rich.markup import escape
from rich.table import Table

from hgsync.cli.context import (
    console,
    fail,
    guarded,
    load_settings,
    make_progress,
    open_repository,
    repository_path,
)
from hgsync.cli.errors import ExitCode
from hgsync.core.network import can_reach_remote
from hgsync.core.repository import HgRepository


def log(
    ctx: typer.Context,
    limit: int = typer.Option(0, "--limit", "-l", help="Show at most this many changesets (0: all)"),
) -> None:
    """Show the graph log."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        text = repo.get_log(limit)
    console.print(escape(text), end="")


def heads(ctx: typer.Context) -> None:
    """List the heads; more than one means unmerged work."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        revisions = repo.get_heads()

    table = Table(title="Heads")
    table.add_column("Rev", style="cyan", justify="right")
    table.add_column("Hash", style="dim")
    table.add_column("Branch")
    table.add_column("User")
    table.add_column("Summary")
    for head in revisions:
        table.add_row(
            head.number.local_number or "",
            head.number.hash,
            head.branch,
            escape(head.user_id),
            escape(head.summary),
        )
    console.print(table)
    if len(revisions) > 1:
        console.print("[yellow]⚠[/yellow]  More than one head: run hgsync merge")


def locks(
    ctx: typer.Context,
    clear: bool = typer.Option(False, "--clear", help="Remove stale lock files"),
) -> None:
    """Show, and optionally clear, stale hg lock files."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        if not repo.has_locks():
            console.print("[green]✓[/green] No locks")
            return
        for path in (repo.locks.working_lock, repo.locks.store_lock):
            if path.exists():
                console.print(f"[yellow]Lock:[/yellow] {escape(str(path))}")
        if not clear:
            return
        repo.ensure_unlocked()
    console.print("[green]✓[/green] Locks removed")


def reach(
    ctx: typer.Context,
    uri: str = typer.Argument(..., help="URL of a remote repository"),
) -> None:
    """Guess whether a remote repository can be reached, without running hg."""
    progress = make_progress(ctx)
    with guarded(progress):
        network = load_settings(ctx).network
        reachable = can_reach_remote(
            uri,
            progress,
            control_host=network.control_host,
            ping_timeout_seconds=network.ping_timeout_seconds,
        )
    if reachable:
        console.print(f"[green]✓[/green] {escape(uri)} looks reachable")
    else:
        console.print(f"[red]✗[/red] {escape(uri)} does not look reachable")
        fail(ExitCode.GENERAL_ERROR)


def diagnose(
    ctx: typer.Context,
    remote: str | None = typer.Option(None, "--remote", help="Report on a remote project instead"),
) -> None:
    """Print diagnostic information for a support request."""
    progress = make_progress(ctx)
    with guarded(progress):
        if remote:
            repo = HgRepository(repository_path(ctx), progress, config=load_settings(ctx))
            repo.get_diagnostic_information_for_remote_project(remote)
        else:
            repo = open_repository(ctx, progress)
            repo.get_diagnostic_information()
