"""
hgsync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys
from pathlib import Path

import typer
from rich.console import Console

from hgsync import __version__
from hgsync.cli import status, sync
from hgsync.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_SYNC = "Synchronize"
PANEL_INSPECT = "Inspect and Repair"

app = typer.Typer(
    name="hgsync",
    help="Drive Mercurial pull/push/merge workflows robustly",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@app.callback()
def main(
    ctx: typer.Context,
    repo: Path | None = typer.Option(
        None,
        "--repo",
        "-R",
        help="Repository root (default: current directory)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show every hg invocation and its output",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging",
    ),
) -> None:
    """
    hgsync - robust Mercurial synchronization.

    Runs the installed hg as a subprocess with time limits, cancellation,
    stale-lock cleanup and proxy discovery.

    Examples:
        hgsync pull usb              # Receive from the [paths] alias "usb"
        hgsync merge 5               # Merge revision 5
        hgsync push https://hg.example.org/project
        hgsync locks --clear         # Remove locks left by a crashed hg
    """
    configure_logging(debug)

    # Precedence: OS env > repository .env > user .env
    load_layered_env(repository_path=repo)

    ctx.obj = {"repo": repo, "verbose": verbose, "debug": debug}


# =============================================================================
# Synchronize
# =============================================================================

app.command(name="pull", rich_help_panel=PANEL_SYNC)(sync.pull)
app.command(name="push", rich_help_panel=PANEL_SYNC)(sync.push)
app.command(name="merge", rich_help_panel=PANEL_SYNC)(sync.merge)
app.command(name="backout", rich_help_panel=PANEL_SYNC)(sync.backout)
app.command(name="clone", rich_help_panel=PANEL_SYNC)(sync.clone)
app.command(name="tag", rich_help_panel=PANEL_SYNC)(sync.tag)

# =============================================================================
# Inspect and Repair
# =============================================================================

app.command(name="log", rich_help_panel=PANEL_INSPECT)(status.log)
app.command(name="heads", rich_help_panel=PANEL_INSPECT)(status.heads)
app.command(name="verify", rich_help_panel=PANEL_INSPECT)(sync.verify)
app.command(name="recover", rich_help_panel=PANEL_INSPECT)(sync.recover)
app.command(name="locks", rich_help_panel=PANEL_INSPECT)(status.locks)
app.command(name="reach", rich_help_panel=PANEL_INSPECT)(status.reach)
app.command(name="diagnose", rich_help_panel=PANEL_INSPECT)(status.diagnose)


@app.command(rich_help_panel=PANEL_INSPECT)
def version() -> None:
    """Show hgsync version and exit."""
    console.print(f"hgsync version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
