"""Destination workspace interface.

A ``Workspace`` is a local working copy of the centralized repository,
rooted at ``local_root`` and mapped to ``server_root`` on the server.  All
pend/undo operations take POSIX paths relative to ``local_root``; history
entries carry absolute server paths.

Concrete adapters (see ``vcs_mirror.core.svn``) translate these calls into
the destination's own client.  The engine never talks to the destination
any other way.
"""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel


class LockLevel(str, Enum):
    """Advisory lock levels on a server path."""

    NONE = "none"
    CHECKIN = "checkin"
    CHECKOUT = "checkout"


class PendingChangeType(str, Enum):
    ADD = "add"
    DELETE = "delete"
    RENAME = "rename"
    EDIT = "edit"
    LOCK = "lock"


class PendingChange(BaseModel):
    """An uncommitted change staged in the working copy.

    Attributes:
        path: Path relative to the workspace root.
        change_type: Kind of staged change.
        source_path: Original path for renames.
    """

    path: str
    change_type: PendingChangeType
    source_path: str | None = None

    model_config = {"frozen": True}


class ChangedItem(BaseModel):
    """One item touched by a changeset."""

    server_path: str
    item_type: str = "file"
    action: str = ""

    model_config = {"frozen": True}

    @property
    def is_file(self) -> bool:
        return self.item_type == "file"


class Changeset(BaseModel):
    """A committed changeset in destination history."""

    changeset_id: int
    comment: str = ""
    owner: str = ""
    created_at: datetime | None = None
    changes: tuple[ChangedItem, ...] = ()

    model_config = {"frozen": True}


class SyncStatus(BaseModel):
    """Result of bringing the working copy to a server version.

    Attributes:
        no_action_needed: ``True`` when nothing on disk changed.
        conflicts: Paths left in conflict.
        failures: Paths that could not be updated.
        warnings: Informational messages from the client.
    """

    no_action_needed: bool = True
    conflicts: list[str] = []
    failures: list[str] = []
    warnings: list[str] = []

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return not self.conflicts and not self.failures

    def __str__(self) -> str:
        return (
            f"{len(self.conflicts)} conflict(s), {len(self.failures)} failure(s), "
            f"{len(self.warnings)} warning(s)"
        )


class Workspace(ABC):
    """Abstract destination working copy.

    Args:
        local_root: Directory holding the working copy.
        server_root: Server path the working copy is mapped to.
    """

    def __init__(self, local_root: Path, server_root: str) -> None:
        self.local_root = Path(local_root)
        self.server_root = server_root.rstrip("/")

    # ------------------------------------------------------------------
    # Path mapping
    # ------------------------------------------------------------------

    def local_path(self, relative: str) -> Path:
        """Absolute local path for a workspace-relative POSIX path."""
        return self.local_root.joinpath(*relative.split("/"))

    def server_path(self, relative: str) -> str:
        if not relative:
            return self.server_root
        return posixpath.join(self.server_root, relative)

    def relative_path(self, server_path: str) -> str | None:
        """Workspace-relative path for a server path, or ``None`` if outside."""
        root = self.server_root.lower()
        candidate = server_path.rstrip("/")
        if candidate.lower() == root:
            return ""
        if candidate.lower().startswith(root + "/"):
            return candidate[len(root) + 1 :]
        return None

    # ------------------------------------------------------------------
    # Working copy state
    # ------------------------------------------------------------------

    @abstractmethod
    def get_pending_changes(self) -> list[PendingChange]:
        """Return every uncommitted change in the working copy."""

    def get_pending_work(self) -> list[PendingChange]:
        """Pending changes that would be checked in, shelved or undone.

        Locks held by the mirror show up as ``LOCK`` entries but carry no
        content, so they are left out.
        """
        return [
            change
            for change in self.get_pending_changes()
            if change.change_type is not PendingChangeType.LOCK
        ]

    @abstractmethod
    def sync_to_latest(self) -> SyncStatus:
        """Update the working copy to the newest server version."""

    @abstractmethod
    def sync_to(self, changeset_id: int) -> SyncStatus:
        """Update the working copy to a specific changeset."""

    @abstractmethod
    def list_items(self, path: str = "") -> list[str] | None:
        """Return versioned file paths under *path* (relative to the root).

        Returns ``None`` when the adapter has no authoritative listing.
        """

    # ------------------------------------------------------------------
    # Pending changes
    # ------------------------------------------------------------------

    @abstractmethod
    def pend_add(self, path: str) -> None:
        """Schedule an existing local file for addition."""

    @abstractmethod
    def pend_delete(self, path: str) -> None:
        """Schedule a versioned file for deletion and remove it from disk."""

    @abstractmethod
    def pend_rename(self, old_path: str, new_path: str) -> None:
        """Schedule a rename and move the local file."""

    @abstractmethod
    def pend_edit(self, path: str) -> None:
        """Mark a versioned file as edited."""

    @abstractmethod
    def checkin(self, changes: Sequence[PendingChange], comment: str) -> int:
        """Commit *changes* with auto-resolve disabled.

        Returns:
            The new changeset id.

        Raises:
            CheckinConflictError: Concurrent edits conflicted.
            CheckinError: Any other refusal.
        """

    @abstractmethod
    def shelve(
        self, name: str, comment: str, changes: Sequence[PendingChange]
    ) -> None:
        """Save *changes* under *name* without committing them."""

    @abstractmethod
    def undo(self, changes: Sequence[PendingChange]) -> int:
        """Revert *changes*; returns how many were undone."""

    @abstractmethod
    def set_lock(self, path: str, level: LockLevel) -> None:
        """Set (or clear with ``LockLevel.NONE``) the advisory lock on *path*."""

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @abstractmethod
    def latest_changeset_id(self) -> int:
        """Newest changeset id under the server root."""

    @abstractmethod
    def query_history(
        self,
        path: str = "",
        max_results: int | None = None,
        version_end: int | None = None,
        include_changes: bool = False,
    ) -> list[Changeset]:
        """Return changesets touching *path* (relative to the root), newest first."""

    @abstractmethod
    def item_exists(self, server_path: str, changeset_id: int) -> bool:
        """Whether a file existed at *server_path* as of *changeset_id*."""
