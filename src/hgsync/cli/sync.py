"""
hgsync CLI - synchronization commands.

pull, push, merge, backout, recover, verify, clone and tag, each a thin
wrapper over the repository handle.
"""

import typer

from hgsync.cli.context import (
    console,
    fail,
    guarded,
    load_settings,
    make_progress,
    open_repository,
    resolve_address,
)
from hgsync.cli.errors import ExitCode
from hgsync.core.repository import HgRepository
from hgsync.core.revisions import IntegrityResult


def pull(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Alias from [paths], a directory, or a URL"),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail without the friendly report on errors",
    ),
    check: bool = typer.Option(
        False,
        "--check",
        help="Stop early if the server does not look reachable",
    ),
) -> None:
    """
    Receive changesets from another repository.

    Examples:
        hgsync pull usb
        hgsync pull https://hg.example.org/project
    """
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        address = resolve_address(repo, source)
        if check and not address.is_local:
            repo.ensure_reachable(address.uri)
        if strict:
            source_repo = HgRepository(address.uri, progress, config=repo.config)
            changed = repo.pull_from(source_repo, strict=True)
        else:
            changed = repo.try_to_pull(address.name, address.uri)

    if changed:
        console.print("[green]✓[/green] Received new changesets")
    else:
        console.print("[blue]No new changesets[/blue]")


def push(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Alias from [paths], a directory, or a URL"),
    check: bool = typer.Option(
        False,
        "--check",
        help="Stop early if the server does not look reachable",
    ),
) -> None:
    """
    Send changesets to another repository.

    Failures are reported as warnings; the command still exits 0 because the
    local repository is unaffected.
    """
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        address = resolve_address(repo, target)
        if check and not address.is_local:
            repo.ensure_reachable(address.uri)
        repo.push(address, address.uri)


def merge(
    ctx: typer.Context,
    revision: str = typer.Argument(..., help="Local number or hash to merge"),
) -> None:
    """Merge a revision into the working directory."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        merged = repo.merge(revision)

    if merged:
        console.print(f"[green]✓[/green] Merged {revision}")
    else:
        console.print("[blue]Nothing to merge[/blue]")


def backout(
    ctx: typer.Context,
    revision: str = typer.Argument(..., help="Head revision to back out"),
    message: str = typer.Option(..., "--message", "-m", help="Summary of the backout changeset"),
) -> None:
    """Add a changeset that reverses a head revision."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        new_tip = repo.backout_head(revision, message)

    console.print(f"[green]✓[/green] Backed out {revision} as {new_tip}")


def recover(ctx: typer.Context) -> None:
    """Roll back an interrupted transaction and clear the lock it leaves."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        repo.recover_from_interrupted_transaction_if_needed()

    console.print("[green]✓[/green] Repository is consistent")


def verify(ctx: typer.Context) -> None:
    """Check repository integrity (this can take a long time)."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        integrity = repo.check_integrity()

    if integrity is IntegrityResult.BAD:
        console.print("[red]✗[/red] hg verify reported errors")
        fail(ExitCode.GENERAL_ERROR)
    console.print("[green]✓[/green] Repository is good")


def clone(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Directory or URL to copy from"),
    target: str = typer.Argument(..., help="New directory to create"),
) -> None:
    """Copy a repository to this computer. There is no time limit; Ctrl-C stops it."""
    progress = make_progress(ctx)
    with guarded(progress):
        HgRepository.clone(source, target, progress, config=load_settings(ctx))


def tag(
    ctx: typer.Context,
    revision: str = typer.Argument(..., help="Revision to tag"),
    name: str = typer.Argument(..., help="Tag name"),
) -> None:
    """Tag a revision. This adds a changeset."""
    progress = make_progress(ctx)
    with guarded(progress):
        repo = open_repository(ctx, progress)
        repo.tag_revision(revision, name)

    console.print(f"[green]✓[/green] Tagged {revision} as {name}")
