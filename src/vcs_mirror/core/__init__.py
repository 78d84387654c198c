"""Source and destination providers shared by the mirror engine and CLI."""

from .git import CommitInfo, GitRepository
from .svn import SvnWorkspace
from .workspace import (
    Changeset,
    LockLevel,
    PendingChange,
    PendingChangeType,
    SyncStatus,
    Workspace,
)

__all__ = [
    "Changeset",
    "CommitInfo",
    "GitRepository",
    "LockLevel",
    "PendingChange",
    "PendingChangeType",
    "SvnWorkspace",
    "SyncStatus",
    "Workspace",
]
