"""
Revision graph model and hg output parsers.

Example:
    >>> from hgsync.core.revisions import parse_log
    >>> revisions = parse_log(text_from_hg_log)
    >>> [r.number.local_number for r in revisions]
    ['2', '1', '0']
"""

from hgsync.core.revisions.models import (
    FileAction,
    FileChange,
    IntegrityResult,
    MergeOutcome,
    RecoverOutcome,
    Revision,
    RevisionNumber,
)
from hgsync.core.revisions.parser import (
    classify_integrity,
    classify_merge,
    classify_recover,
    parse_branches,
    parse_file_status,
    parse_log,
)

__all__ = [
    "Revision",
    "RevisionNumber",
    "FileChange",
    "FileAction",
    "MergeOutcome",
    "RecoverOutcome",
    "IntegrityResult",
    "parse_log",
    "parse_file_status",
    "parse_branches",
    "classify_merge",
    "classify_recover",
    "classify_integrity",
]
