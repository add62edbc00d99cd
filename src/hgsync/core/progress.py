"""
Progress sinks.

Every long-running operation reports through a Progress object: status lines
for the user, verbose lines for troubleshooting, warnings and errors. The sink
also carries the cooperative cancellation flag that the command runner checks
before dispatching each hg invocation.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)


@runtime_checkable
class Progress(Protocol):
    """Sink for status, verbose, warning and error messages."""

    @property
    def cancel_requested(self) -> bool: ...

    def write_status(self, message: str, *args: object) -> None: ...

    def write_message(self, message: str, *args: object) -> None: ...

    def write_verbose(self, message: str, *args: object) -> None: ...

    def write_warning(self, message: str, *args: object) -> None: ...

    def write_error(self, message: str, *args: object) -> None: ...

    def write_exception(self, error: BaseException) -> None: ...


def _format(message: str, args: tuple[object, ...]) -> str:
    if not args:
        return message
    try:
        return message.format(*args)
    except (IndexError, KeyError, ValueError):
        return " ".join([message, *(str(a) for a in args)])


class _CancellableProgress:
    """Shared cancellation flag; safe to set from a signal handler or another thread."""

    def __init__(self) -> None:
        self._cancel = threading.Event()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def request_cancel(self) -> None:
        self._cancel.set()

    def reset_cancel(self) -> None:
        self._cancel.clear()


class NullProgress(_CancellableProgress):
    """Discards all messages."""

    def write_status(self, message: str, *args: object) -> None:
        pass

    def write_message(self, message: str, *args: object) -> None:
        pass

    def write_verbose(self, message: str, *args: object) -> None:
        pass

    def write_warning(self, message: str, *args: object) -> None:
        pass

    def write_error(self, message: str, *args: object) -> None:
        pass

    def write_exception(self, error: BaseException) -> None:
        pass


class LoggingProgress(_CancellableProgress):
    """
    Forwards messages to a stdlib logger.

    Status and plain messages go to INFO, verbose to DEBUG, warnings and
    errors to their own levels.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        super().__init__()
        self.log = log or logger

    def write_status(self, message: str, *args: object) -> None:
        self.log.info(_format(message, args))

    def write_message(self, message: str, *args: object) -> None:
        self.log.info(_format(message, args))

    def write_verbose(self, message: str, *args: object) -> None:
        self.log.debug(_format(message, args))

    def write_warning(self, message: str, *args: object) -> None:
        self.log.warning(_format(message, args))

    def write_error(self, message: str, *args: object) -> None:
        self.log.error(_format(message, args))

    def write_exception(self, error: BaseException) -> None:
        self.log.error("%s", error, exc_info=error)


class RecordingProgress(_CancellableProgress):
    """
    Keeps every message in memory as (level, text) pairs.

    Useful for tests and for callers that want to show a diagnostic dump
    after the fact.
    """

    def __init__(self) -> None:
        super().__init__()
        self.entries: list[tuple[str, str]] = []

    def _add(self, level: str, message: str, args: tuple[object, ...]) -> None:
        self.entries.append((level, _format(message, args)))

    def write_status(self, message: str, *args: object) -> None:
        self._add("status", message, args)

    def write_message(self, message: str, *args: object) -> None:
        self._add("message", message, args)

    def write_verbose(self, message: str, *args: object) -> None:
        self._add("verbose", message, args)

    def write_warning(self, message: str, *args: object) -> None:
        self._add("warning", message, args)

    def write_error(self, message: str, *args: object) -> None:
        self._add("error", message, args)

    def write_exception(self, error: BaseException) -> None:
        self._add("error", str(error), ())

    def messages(self, level: str) -> list[str]:
        """Return the texts recorded at one level."""
        return [text for lvl, text in self.entries if lvl == level]

    @property
    def text(self) -> str:
        return "\n".join(text for _, text in self.entries)


class ConsoleProgress(_CancellableProgress):
    """Renders messages on a rich console; verbose lines only when asked for."""

    def __init__(self, console: Console | None = None, *, verbose: bool = False) -> None:
        super().__init__()
        self.console = console or Console(stderr=True)
        self.verbose = verbose

    def write_status(self, message: str, *args: object) -> None:
        self.console.print(f"[blue]{escape(_format(message, args))}[/blue]", highlight=False)

    def write_message(self, message: str, *args: object) -> None:
        self.console.print(_format(message, args), markup=False, highlight=False)

    def write_verbose(self, message: str, *args: object) -> None:
        if self.verbose:
            self.console.print(f"[dim]{escape(_format(message, args))}[/dim]", highlight=False)

    def write_warning(self, message: str, *args: object) -> None:
        self.console.print(f"[yellow]Warning:[/yellow] {escape(_format(message, args))}", highlight=False)

    def write_error(self, message: str, *args: object) -> None:
        self.console.print(f"[red]Error:[/red] {escape(_format(message, args))}", highlight=False)

    def write_exception(self, error: BaseException) -> None:
        self.console.print(f"[red]Error:[/red] {escape(str(error))}", highlight=False)
