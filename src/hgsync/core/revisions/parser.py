"""
Parsers for hg's line-oriented output.

hg prints changesets as blocks of ``label: value`` lines::

    changeset:   0:7ee3570760cd
    tag:         tip
    user:        hattonjohn@gmail.com
    date:        Wed Jul 02 16:40:26 2008 -0600
    summary:     bob: first one

parse_log() turns such text into Revision objects. A "changeset" line opens a
new record; every other recognised label sets a field on the open record.
Lines seen before any record is open have nothing to attach to and are
skipped. Input is consumed lazily and bounded by max_lines, so a stream that
never ends cannot hang the caller.

The classify_* helpers centralise the substring checks hg's exit codes force
on us ("nothing to merge", "no interrupted", "error").
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field

from hgsync.core.errors import MalformedOutput
from hgsync.core.process import ExecutionResult
from hgsync.core.revisions.models import (
    FileAction,
    FileChange,
    IntegrityResult,
    MergeOutcome,
    RecoverOutcome,
    Revision,
    RevisionNumber,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOG_LINES = 2_000_000

_STATUS_LETTERS: dict[str, FileAction] = {
    "A": FileAction.ADDED,
    "M": FileAction.MODIFIED,
    "R": FileAction.DELETED,
    "!": FileAction.DELETED,
    "C": FileAction.NO_CHANGES,
}


@dataclass
class _RevisionBuilder:
    """Mutable accumulator for the record currently being read."""

    number: RevisionNumber
    parents: list[RevisionNumber] = field(default_factory=list)
    fields: dict[str, str] = field(default_factory=dict)

    def build(self) -> Revision:
        return Revision(number=self.number, parents=tuple(self.parents), **self.fields)


_FIELD_LABELS = {
    "branch": "branch",
    "user": "user_id",
    "date": "date_string",
    "summary": "summary",
    "tag": "tag",
}


def _lines(text: str | Iterable[str]) -> Iterable[str]:
    if isinstance(text, str):
        return text.splitlines()
    return text


def parse_log(text: str | Iterable[str], *, max_lines: int = DEFAULT_MAX_LOG_LINES) -> list[Revision]:
    """
    Parse hg log/heads/tip/parents output into revisions.

    Args:
        text: The output, either whole or as an iterable of lines
        max_lines: Upper bound on lines consumed

    Returns:
        Revisions in the order they appear.

    Raises:
        MalformedOutput: If more than max_lines lines are offered.

    Example:
        >>> revs = parse_log("changeset: 0:abc\\nsummary: first\\n")
        >>> revs[0].summary
        'first'
    """
    revisions: list[Revision] = []
    current: _RevisionBuilder | None = None
    orphans = 0

    for count, line in enumerate(_lines(text), start=1):
        if count > max_lines:
            raise MalformedOutput(
                f"hg output exceeded {max_lines} lines without ending; giving up"
            )

        label, sep, raw_value = line.partition(":")
        if not sep or not label:
            continue
        value = raw_value.strip()

        if label == "changeset":
            if current is not None:
                revisions.append(current.build())
            current = _RevisionBuilder(number=RevisionNumber.parse(value))
            continue

        if label != "parent" and label not in _FIELD_LABELS:
            continue

        if current is None:
            orphans += 1
            continue

        if label == "parent":
            current.parents.append(RevisionNumber.parse(value))
        else:
            current.fields[_FIELD_LABELS[label]] = value

    if current is not None:
        revisions.append(current.build())

    if orphans:
        logger.debug("Skipped %d line(s) that preceded any changeset record", orphans)

    return revisions


def parse_file_status(
    text: str,
    *,
    repository_path: str = "",
    revision_local_number: str = "-1",
    treat_clean_as_added: bool = False,
    include_unknown: bool = False,
) -> list[FileChange]:
    """
    Parse `hg status` output into file changes.

    Each non-blank line is ``<letter> <path>``. The letter maps A->Added,
    M->Modified, R->Deleted, !->Deleted, C->NoChanges; anything else is Unknown.

    Args:
        text: The status output
        repository_path: Root joined in front of every path
        revision_local_number: Local number recorded on each change
        treat_clean_as_added: Report C (clean) as Added. Used when listing the
            files of a root changeset, which has no baseline to diff against.
        include_unknown: Keep entries whose letter is not recognised

    Returns:
        File changes in output order.
    """
    changes: list[FileChange] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        action = _STATUS_LETTERS.get(line[0], FileAction.UNKNOWN)
        if action is FileAction.NO_CHANGES and treat_clean_as_added:
            action = FileAction.ADDED
        if action is FileAction.UNKNOWN and not include_unknown:
            continue
        relative = line[2:]
        full_path = os.path.join(repository_path, relative) if repository_path else relative
        changes.append(
            FileChange(
                revision_local_number=revision_local_number,
                full_path=full_path,
                action=action,
            )
        )
    return changes


def parse_branches(text: str) -> list[Revision]:
    """
    Parse `hg branches` output (``name   N:HASH [(inactive)]``) into revisions.

    Lines without a revision column are skipped.
    """
    branches: list[Revision] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        number = RevisionNumber.parse(parts[1])
        if number.local_number is None:
            continue
        branches.append(Revision(number=number, branch=parts[0]))
    return branches


def classify_merge(result: ExecutionResult) -> MergeOutcome:
    """Classify a `hg merge` result run with non-zero exit tolerated."""
    if result.exit_code == 0:
        return MergeOutcome.MERGED
    if "nothing to merge" in result.standard_error:
        return MergeOutcome.NOTHING_TO_MERGE
    return MergeOutcome.FAILED


def classify_recover(result: ExecutionResult) -> RecoverOutcome:
    """Classify a `hg recover` result run with non-zero exit tolerated."""
    if result.standard_error.startswith("no interrupted"):
        return RecoverOutcome.NONE_NEEDED
    if result.standard_error:
        return RecoverOutcome.FAILED
    return RecoverOutcome.RECOVERED


def classify_integrity(result: ExecutionResult) -> IntegrityResult:
    """
    Classify a `hg verify` result run with non-zero exit tolerated.

    hg prints its findings to stderr and exits 1, so a non-zero exit or any
    mention of "error" on either stream means the repository is bad.
    """
    if result.exit_code != 0:
        return IntegrityResult.BAD
    text = f"{result.standard_output}\n{result.standard_error}"
    if "error" in text.lower():
        return IntegrityResult.BAD
    return IntegrityResult.GOOD
