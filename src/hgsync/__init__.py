"""
hgsync - Mercurial synchronization driver.

Drives an installed ``hg`` executable as a subprocess, interprets its text
output as a revision graph, and runs pull/push/merge/backout/recover workflows
with failure handling suited to slow disks and unreliable networks.
"""

__version__ = "0.4.0-dev"

# Re-export the main entry points for convenience
from hgsync.core.errors import HgError
from hgsync.core.repository import HgRepository
from hgsync.core.revisions.models import FileAction, FileChange, Revision, RevisionNumber

__all__ = [
    "HgError",
    "HgRepository",
    "Revision",
    "RevisionNumber",
    "FileChange",
    "FileAction",
    "__version__",
]
