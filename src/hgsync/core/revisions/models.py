"""
Data models for the revision graph.

Defines Pydantic models for revision numbers, revisions and file changes,
plus the result variants produced when classifying hg command outcomes.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RevisionNumber(BaseModel):
    """
    A changeset identifier as hg prints it.

    The hash is the identity. The local sequence number is only meaningful
    inside one clone and is None when only a hash is known.

    Example:
        >>> n = RevisionNumber.parse("3:7ee3570760cd")
        >>> n.local_number, n.hash
        ('3', '7ee3570760cd')
    """

    model_config = ConfigDict(frozen=True)

    local_number: str | None = Field(
        default=None,
        description="Repository-relative sequence number, e.g. '3'",
    )
    hash: str = Field(description="Global changeset hash (short or full)")

    @classmethod
    def parse(cls, descriptor: str) -> RevisionNumber:
        """Parse a 'N:HASH' descriptor, or a bare hash."""
        descriptor = descriptor.strip()
        local, sep, hash_part = descriptor.partition(":")
        if sep:
            return cls(local_number=local.strip(), hash=hash_part.strip())
        return cls(local_number=None, hash=descriptor)

    def matches(self, local_or_hash: str) -> bool:
        """True if the given text is this revision's local number or hash."""
        if self.local_number is not None and self.local_number == local_or_hash:
            return True
        return self.hash == local_or_hash

    def __str__(self) -> str:
        if self.local_number is None:
            return self.hash
        return f"{self.local_number}:{self.hash}"


class Revision(BaseModel):
    """
    One changeset from hg log-style output.

    Zero parents means a root changeset; two parents means a merge.
    """

    model_config = ConfigDict(frozen=True)

    number: RevisionNumber
    parents: tuple[RevisionNumber, ...] = Field(default_factory=tuple)
    branch: str = "unknown"
    user_id: str = ""
    date_string: str = ""
    summary: str = ""
    tag: str | None = None

    @property
    def is_root(self) -> bool:
        return len(self.parents) == 0

    @property
    def is_merge(self) -> bool:
        return len(self.parents) == 2

    def matches_local_or_hash(self, local_or_hash: str) -> bool:
        return self.number.matches(local_or_hash)


class FileAction(str, Enum):
    """What happened to a file in a revision."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    NO_CHANGES = "no_changes"
    UNKNOWN = "unknown"


class FileChange(BaseModel):
    """A file touched by a revision."""

    model_config = ConfigDict(frozen=True)

    revision_local_number: str = Field(description="Local number of the owning revision ('-1' if none)")
    full_path: str
    action: FileAction


class MergeOutcome(str, Enum):
    """Result of `hg merge` once the exit code and stderr are classified."""

    MERGED = "merged"
    NOTHING_TO_MERGE = "nothing_to_merge"
    FAILED = "failed"


class RecoverOutcome(str, Enum):
    """Result of `hg recover` once the exit code and stderr are classified."""

    RECOVERED = "recovered"
    NONE_NEEDED = "none_needed"
    FAILED = "failed"


class IntegrityResult(str, Enum):
    """Result of `hg verify`."""

    GOOD = "good"
    BAD = "bad"
