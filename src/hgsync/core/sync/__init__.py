"""
Synchronization workflows.

SyncService runs the multi-step operations on a repository handle: pull,
push, merge, backout, recover, clone, verify and tag.

Example:
    >>> repo = HgRepository(Path("/work/project"), LoggingProgress())
    >>> if repo.sync.pull_from(HgRepository("/media/usb/project")):
    ...     repo.sync.merge(repo.get_tip().number.hash)
"""

from hgsync.core.sync.service import SyncService

__all__ = ["SyncService"]
