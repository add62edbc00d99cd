"""
Ctrl-C handling for long hg operations.

Two-stage model:
1. First interrupt: request cancellation on the registered progress sinks.
   The command runner notices within a poll interval, kills the running hg
   process group, and the operation unwinds with Cancelled.
2. Second interrupt: force exit with SystemExit(130).

Usage:
    >>> progress = ConsoleProgress()
    >>> with InterruptHandler(progress):
    ...     repo.pull_from(source)
"""

from __future__ import annotations

import logging
import signal
import sys
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Cancellable(Protocol):
    def request_cancel(self) -> None: ...


class InterruptHandler:
    """
    Handles SIGINT/SIGTERM by cancelling hg work instead of dying mid-transaction.

    Killing the Python process outright would leave hg's lock files behind;
    cancelling lets the runner kill hg and report a clean Cancelled instead.
    """

    def __init__(self, *targets: Cancellable) -> None:
        self._interrupted = False
        self._targets: list[Cancellable] = list(targets)
        self._callbacks: list[Callable[[], None]] = []
        self._saved: dict[int, Any] = {}

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def register(self) -> None:
        """Install the handlers, saving the originals for unregister()."""
        for signum in HANDLED_SIGNALS:
            self._saved[signum] = signal.signal(signum, self._handle_signal)

    def unregister(self) -> None:
        while self._saved:
            signum, previous = self._saved.popitem()
            # None means the previous handler was not installed from Python
            signal.signal(signum, signal.SIG_DFL if previous is None else previous)

    def __enter__(self) -> InterruptHandler:
        self.register()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unregister()

    def add_target(self, target: Cancellable) -> None:
        self._targets.append(target)

    def on_interrupt(self, callback: Callable[[], None]) -> None:
        """Run callback on the first interrupt, after cancellation was requested."""
        self._callbacks.append(callback)

    def _handle_signal(self, signum: int, frame: object) -> None:
        if self._interrupted:
            self._write_to_stderr("\n[Force exiting...]\n")
            raise SystemExit(130)

        self._interrupted = True
        self._write_to_stderr("\n[Interrupt received. Stopping hg...]\n")

        for target in self._targets:
            target.request_cancel()

        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:  # noqa: BLE001
                # A failing callback must not disrupt shutdown
                logger.debug("Interrupt callback failed: %s", e)

    @staticmethod
    def _write_to_stderr(message: str) -> None:
        # No rich here: this runs inside a signal handler
        sys.stderr.write(message)
        sys.stderr.flush()
