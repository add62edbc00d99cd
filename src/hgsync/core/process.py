"""
Process execution for the hg executable.

This module provides:
- ExecutionResult, the captured outcome of one hg invocation
- run_command(), which spawns a process in its own process group, enforces a
  timeout, and honours cancellation requested through the progress sink while
  the process is running
- Process group management so a killed hg does not leave children behind

Everything here is synchronous: the engine runs one hg process at a time and
waits for it.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from hgsync.core.errors import Cancelled
from hgsync.core.progress import Progress

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"
IS_UNIX = not IS_WINDOWS

# How often a running process is checked for cancellation
POLL_INTERVAL_SECONDS = 0.25

# Exit code reported when the process was killed before it could report one
KILLED_EXIT_CODE = -1


class ExecutionResult(BaseModel):
    """Captured result of one external invocation. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    """Process exit code (KILLED_EXIT_CODE if killed on timeout or cancellation)."""

    standard_output: str = ""
    """Standard output from the process."""

    standard_error: str = ""
    """Standard error from the process."""

    did_time_out: bool = False
    """Whether the process was terminated because it exceeded its budget."""

    was_cancelled: bool = False
    """Whether the process was terminated because cancellation was requested."""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.did_time_out and not self.was_cancelled


class CommandRunner(Protocol):
    """Callable that runs one command and captures its result."""

    def __call__(
        self,
        command: Sequence[str],
        working_directory: str | None,
        timeout_seconds: float | None,
        progress: Progress,
    ) -> ExecutionResult: ...


def run_command(
    command: Sequence[str],
    working_directory: str | None,
    timeout_seconds: float | None,
    progress: Progress,
    *,
    env: dict[str, str] | None = None,
) -> ExecutionResult:
    """
    Run a command with a timeout and cooperative cancellation.

    The process is started in a new session (Unix) so that on timeout or
    cancellation the whole process group can be killed. While waiting, the
    progress sink's cancel flag is checked every POLL_INTERVAL_SECONDS.

    Args:
        command: Executable and arguments (e.g., ["hg", "status", "-R", path])
        working_directory: Directory to run in, or None for the current one
        timeout_seconds: Budget in seconds. None means no ceiling (still cancellable).
        progress: Sink whose cancel_requested flag is honoured
        env: Extra environment variables merged over os.environ

    Returns:
        ExecutionResult with output, exit code and timeout/cancel flags.

    Raises:
        Cancelled: If cancellation was already requested before dispatch.
        FileNotFoundError: If the executable does not exist.

    Example:
        >>> result = run_command(["hg", "version"], None, 5, NullProgress())
        >>> result.exit_code
        0
    """
    if progress.cancel_requested:
        raise Cancelled()

    process_env = None
    if env is not None:
        process_env = os.environ.copy()
        process_env.update(env)

    kwargs: dict[str, Any] = {
        "stdout": subprocess.PIPE,
        "stderr": subprocess.PIPE,
        "stdin": subprocess.DEVNULL,
        "cwd": working_directory,
        "env": process_env,
    }
    # New process group so the whole tree can be killed
    if IS_UNIX:
        kwargs["start_new_session"] = True
    else:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]

    logger.debug("Running process: %s", " ".join(command))
    process = subprocess.Popen(list(command), **kwargs)

    deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
    stdout_bytes = b""
    stderr_bytes = b""
    timed_out = False
    cancelled = False

    try:
        while True:
            wait = POLL_INTERVAL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    timed_out = True
                    break
                wait = min(wait, remaining)
            try:
                stdout_bytes, stderr_bytes = process.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                if progress.cancel_requested:
                    cancelled = True
                    break

        if timed_out or cancelled:
            kill_process_group(process)
            # Collect whatever was written before the kill
            try:
                stdout_bytes, stderr_bytes = process.communicate(timeout=5.0)
            except (subprocess.TimeoutExpired, ValueError, OSError):
                stdout_bytes, stderr_bytes = b"", b""
    finally:
        ensure_process_terminated(process)

    stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
    stderr = stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else ""

    if timed_out:
        logger.warning("Process timed out after %ss: %s", timeout_seconds, " ".join(command))
        stderr = stderr or f"Process timed out after {timeout_seconds}s"
    if cancelled:
        logger.info("Process cancelled: %s", " ".join(command))

    exit_code = process.returncode
    if timed_out or cancelled or exit_code is None:
        exit_code = KILLED_EXIT_CODE

    return ExecutionResult(
        exit_code=exit_code,
        standard_output=stdout,
        standard_error=stderr,
        did_time_out=timed_out,
        was_cancelled=cancelled,
    )


def kill_process_group(process: subprocess.Popen[bytes]) -> None:
    """
    Kill the process group to ensure all child processes are terminated.

    This function handles platform differences:
    - Unix: Uses process groups with os.killpg()
    - Windows: Falls back to direct process.kill()

    Args:
        process: The subprocess to kill along with its children.
    """
    if process.poll() is not None:
        return  # Already terminated

    if IS_UNIX:
        try:
            # Process group ID equals the PID because of start_new_session=True
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug("Killed process group %s", pgid)
        except (ProcessLookupError, OSError) as e:
            logger.debug("Process group kill failed (process may be dead): %s", e)
    else:
        try:
            process.kill()
            logger.debug("Killed process %s on Windows", process.pid)
        except OSError as e:
            logger.debug("Process kill failed (process may be dead): %s", e)

    try:
        process.wait(timeout=5.0)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s did not exit after kill", process.pid)


def ensure_process_terminated(process: subprocess.Popen[bytes]) -> None:
    """
    Ensure the process is fully terminated using graceful shutdown.

    1. Try graceful termination with SIGTERM (process.terminate())
    2. Wait up to 2 seconds for graceful shutdown
    3. Force kill with SIGKILL if still running (via kill_process_group)

    Should be called in finally blocks to guarantee cleanup.
    """
    if process.poll() is not None:
        return

    try:
        logger.debug("Terminating process %s gracefully", process.pid)
        process.terminate()
        try:
            process.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            logger.debug("Process %s did not terminate gracefully, force killing", process.pid)
            kill_process_group(process)
    except (ProcessLookupError, OSError) as e:
        logger.debug("Process termination skipped (already dead): %s", e)
