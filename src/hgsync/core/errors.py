"""
Exception hierarchy for hgsync.

All errors raised by the engine derive from HgError so callers can catch
one type at the boundary (the CLI does) while still branching on the
specific failure when it matters (auth problems, cancellation, timeouts).
"""

from __future__ import annotations


class HgError(Exception):
    """Base exception for all hgsync failures."""

    pass


class Cancelled(HgError):
    """Raised when the progress sink requested cancellation before dispatch."""

    def __init__(self, message: str = "User cancelled") -> None:
        super().__init__(message)


class TimedOut(HgError):
    """Raised when an hg process exceeded its time budget and was killed."""

    def __init__(self, message: str, *, command: list[str] | None = None, seconds: float | None = None):
        super().__init__(message)
        self.command = command
        self.seconds = seconds


class CommandFailure(HgError):
    """
    Raised when hg exits non-zero and the caller did not tolerate it.

    Attributes:
        exit_code: Process exit code
        stderr: Captured standard error
        stdout: Captured standard output
        command: The argument vector that was run (without the executable)
        diagnostic_context: Extra operator-facing details (command line, hg version)
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        stdout: str = "",
        command: list[str] | None = None,
        diagnostic_context: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        self.command = command
        self.diagnostic_context = diagnostic_context

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostic_context:
            return f"{base}\n{self.diagnostic_context}"
        return base


class AuthRejected(CommandFailure):
    """Raised when the server rejected the project name, user name, or password."""

    @classmethod
    def from_failure(cls, error: BaseException) -> AuthRejected:
        if isinstance(error, CommandFailure):
            return cls(
                "The server rejected the project name, user name, or password.",
                exit_code=error.exit_code,
                stderr=error.stderr,
                stdout=error.stdout,
                command=error.command,
                diagnostic_context=error.diagnostic_context,
            )
        return cls(
            "The server rejected the project name, user name, or password.",
            stderr=str(error),
        )


class MalformedOutput(HgError):
    """Raised when structured hg output cannot be interpreted."""

    pass


class LockHeld(HgError):
    """Raised when a lock cannot be cleared because an hg process appears active."""

    def __init__(self, message: str, *, lock_path: str | None = None):
        super().__init__(message)
        self.lock_path = lock_path


class InvalidOperation(HgError):
    """Raised when an operation's precondition does not hold."""

    pass


class NetworkUnavailable(HgError):
    """Raised when there is no network, or the remote is unreachable by every heuristic."""

    pass


class RepositoryNotFound(HgError):
    """Raised when a path is not (and cannot become) a repository."""

    pass


class ConfigurationError(HgError):
    """Raised when a settings file cannot be read or written."""

    pass


def is_auth_failure(text: str) -> bool:
    """Return True if hg error text indicates the server rejected the credentials."""
    return "authorization" in text.lower()
