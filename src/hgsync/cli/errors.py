"""
Standardized error handling and exit codes for the hgsync CLI.

This module provides consistent error messaging with actionable guidance
and maps engine exceptions to exit codes.
"""

from enum import IntEnum

from rich.console import Console
from rich.markup import escape

from hgsync.core.errors import (
    AuthRejected,
    Cancelled,
    ConfigurationError,
    HgError,
    InvalidOperation,
    LockHeld,
    NetworkUnavailable,
    RepositoryNotFound,
    TimedOut,
)

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for hgsync CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """hg failed, or the operation reported a bad result."""

    USER_ERROR = 2
    """Fixable by the user: wrong path, credentials, precondition, settings."""

    SIGINT = 130
    """Cancelled by Ctrl+C - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Not an hg repository",
        ...     reason="There is no .hg directory at /work/project",
        ...     solution="hgsync --repo /path/to/repository pull ...",
        ... )
    """
    console.print(f"[red]Error:[/red] {escape(problem)}")

    if reason:
        console.print(f"[dim]{escape(reason)}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {escape(solution)}")


def exit_code_for(error: HgError) -> ExitCode:
    if isinstance(error, Cancelled):
        return ExitCode.SIGINT
    if isinstance(
        error,
        (AuthRejected, InvalidOperation, RepositoryNotFound, ConfigurationError, NetworkUnavailable),
    ):
        return ExitCode.USER_ERROR
    return ExitCode.GENERAL_ERROR


def report_error(error: HgError) -> ExitCode:
    """Print an engine error with guidance for the common cases and return its exit code."""
    if isinstance(error, Cancelled):
        print_error("Cancelled", reason="hg was stopped before it finished")
    elif isinstance(error, AuthRejected):
        print_error(
            "The server rejected the project name, user name, or password",
            reason=error.stderr.strip() or None,
            solution="check the account details in the [paths] entry of .hg/hgrc",
        )
    elif isinstance(error, RepositoryNotFound):
        print_error(str(error), solution="hgsync --repo /path/to/repository ...")
    elif isinstance(error, LockHeld):
        print_error(
            str(error),
            reason="An hg process still appears to be running",
            solution="close other Mercurial programs, then run: hgsync locks --clear",
        )
    elif isinstance(error, TimedOut):
        print_error(str(error), reason="hg took longer than its time budget and was stopped")
    elif isinstance(error, NetworkUnavailable):
        print_error(str(error), solution="hgsync reach <uri>  # to see where the connection fails")
    else:
        print_error(str(error))
    return exit_code_for(error)
