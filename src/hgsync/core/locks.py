"""
Detection and removal of stale hg lock files.

hg guards a repository with two lock files inside its ``.hg`` directory:
``.hg/wlock`` for the working directory and ``.hg/store/lock`` for the
store. A crashed or killed hg leaves them behind and every later command
then waits on them. A lock is only removed when no hg process is running,
since a live process may legitimately hold it.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path

import psutil

from hgsync.core.errors import LockHeld
from hgsync.core.progress import NullProgress, Progress

logger = logging.getLogger(__name__)

DEFAULT_PROCESS_NAME = "hg.exe" if sys.platform == "win32" else "hg"


def working_lock_path(repository_path: str | Path) -> Path:
    return Path(repository_path) / ".hg" / "wlock"


def store_lock_path(repository_path: str | Path) -> Path:
    return Path(repository_path) / ".hg" / "store" / "lock"


def has_locks(repository_path: str | Path) -> bool:
    """Return True if either lock file exists."""
    return working_lock_path(repository_path).exists() or store_lock_path(repository_path).exists()


def is_process_running(process_name: str) -> bool:
    """
    Return True if any process with this name is running.

    Matches the executable name, and also the script name for interpreters
    (hg is usually a Python script, so the process name is "python").
    """
    for proc in psutil.process_iter(["name", "cmdline"]):
        try:
            if proc.info["name"] == process_name:
                return True
            cmdline = proc.info["cmdline"] or []
            if len(cmdline) > 1 and os.path.basename(cmdline[1]) == process_name:
                return True
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return False


class LockManager:
    """
    Finds and clears stale locks for one repository.

    Example:
        >>> locks = LockManager(Path("/work/project"))
        >>> if locks.has_locks():
        ...     locks.remove_stale_locks()
    """

    def __init__(
        self,
        repository_path: str | Path,
        progress: Progress | None = None,
        *,
        process_probe: Callable[[str], bool] = is_process_running,
    ) -> None:
        """
        Args:
            repository_path: Root of the repository (the directory containing .hg)
            progress: Sink for warnings and errors
            process_probe: Tells whether a process with a given name is running
        """
        self.repository_path = Path(repository_path)
        self.progress = progress or NullProgress()
        self.process_probe = process_probe

    @property
    def working_lock(self) -> Path:
        return working_lock_path(self.repository_path)

    @property
    def store_lock(self) -> Path:
        return store_lock_path(self.repository_path)

    def has_locks(self) -> bool:
        return has_locks(self.repository_path)

    def remove_stale_locks(
        self,
        process_name: str = DEFAULT_PROCESS_NAME,
        warn_if_found: bool = False,
    ) -> bool:
        """
        Remove both lock files if it looks safe to do so.

        Args:
            process_name: Process whose presence means a lock may be live
            warn_if_found: Report each lock found and removed as a warning

        Returns:
            True if no lock remains, False if any lock could not be cleared.
        """
        if not self._remove_lock_file(self.working_lock, process_name, warn_if_found=True):
            return False
        return self._remove_lock_file(self.store_lock, process_name, warn_if_found=warn_if_found)

    def ensure_unlocked(self, process_name: str = DEFAULT_PROCESS_NAME) -> None:
        """
        Clear stale locks or raise.

        Raises:
            LockHeld: If a lock remains after the removal attempt.
        """
        if self.remove_stale_locks(process_name, warn_if_found=True):
            return
        remaining = self.working_lock if self.working_lock.exists() else self.store_lock
        raise LockHeld(
            f"Could not remove {remaining.name} from {self.repository_path}",
            lock_path=str(remaining),
        )

    def _remove_lock_file(self, lock_path: Path, process_name: str, *, warn_if_found: bool) -> bool:
        if not lock_path.exists():
            return True

        if warn_if_found:
            self.progress.write_warning("Trying to remove a lock at {0}...", lock_path)

        if self.process_probe(process_name):
            self.progress.write_error(
                "There is at least one {0} running, so {1} cannot be removed. "
                "You may need to restart the computer.",
                process_name,
                lock_path.name,
            )
            return False

        try:
            lock_path.unlink()
            logger.info("Removed stale lock %s", lock_path)
            if warn_if_found:
                self.progress.write_warning("Lock safely removed.")
            return True
        except OSError as error:
            logger.debug("Could not delete %s: %s", lock_path, error)
            return self._move_lock_aside(lock_path, error)

    def _move_lock_aside(self, lock_path: Path, original_error: OSError) -> bool:
        """Move an undeletable lock into the temp directory, outside the repository."""
        try:
            fd, destination = tempfile.mkstemp(prefix="hg-lock-")
            os.close(fd)
            os.remove(destination)
            shutil.move(str(lock_path), destination)
        except OSError as error:
            logger.debug("Could not move %s aside: %s", lock_path, error)
            self.progress.write_error(
                "The file {0} could not be removed. You may need to restart the computer.",
                lock_path.name,
            )
            self.progress.write_error(str(original_error))
            return False

        self.progress.write_warning("Lock could not be deleted, but was moved to temp directory.")
        return True
