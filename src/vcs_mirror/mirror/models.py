"""Pydantic models for the mirror engine.

Defines the plain-data contracts passed between pipeline stages:

- ``ChangeKind``: Enum of per-path diff kinds.
- ``ChangeEntry``: One diff record between two trees.
- ``CommitRange``: The two endpoints reconciled by one application step.
- ``ApplyResult``: Outcome of applying a change list to a sink.
- ``LoopState`` / ``CycleOutcome`` / ``CycleResult``: Sync loop bookkeeping.
- ``PortingData``: Partitioned changesets for the reverse direction.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, model_validator

from vcs_mirror.core.workspace import Changeset


class ChangeKind(str, Enum):
    """Kinds of change between an old and a new tree."""

    ADDED = "added"
    DELETED = "deleted"
    RENAMED = "renamed"
    MODIFIED = "modified"


class ChangeEntry(BaseModel):
    """A single diff record between two trees.

    Paths are POSIX-style and relative to the tree root.  Hashes are
    hex object ids; modes are git file modes (e.g. ``0o100644``).

    Attributes:
        kind: The kind of change.
        old_path: Path in the old tree (``None`` for additions).
        new_path: Path in the new tree (``None`` for deletions).
        old_hash: Blob id in the old tree.
        new_hash: Blob id in the new tree.
        old_mode: File mode in the old tree.
        new_mode: File mode in the new tree.
    """

    kind: ChangeKind
    old_path: str | None = None
    new_path: str | None = None
    old_hash: str | None = None
    new_hash: str | None = None
    old_mode: int | None = None
    new_mode: int | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_kind_invariants(self) -> "ChangeEntry":
        if self.kind is ChangeKind.ADDED:
            if self.old_hash is not None or self.new_path is None:
                raise ValueError("added entry must have a new path and no old hash")
        elif self.kind is ChangeKind.DELETED:
            if self.new_hash is not None or self.old_path is None:
                raise ValueError("deleted entry must have an old path and no new hash")
        elif self.kind is ChangeKind.RENAMED:
            if self.old_path is None or self.new_path is None:
                raise ValueError("renamed entry needs both paths")
            if self.old_path == self.new_path:
                raise ValueError(f"renamed entry has identical paths: {self.old_path}")
        elif self.kind is ChangeKind.MODIFIED:
            if self.old_path != self.new_path or self.old_path is None:
                raise ValueError("modified entry must keep its path")
            if self.old_hash == self.new_hash and self.old_mode == self.new_mode:
                raise ValueError(f"modified entry {self.old_path} changes nothing")
        return self

    @property
    def path(self) -> str:
        """The path the change lands on (new path, or old path for deletes)."""
        return self.new_path if self.new_path is not None else self.old_path  # type: ignore[return-value]

    @property
    def content_changed(self) -> bool:
        return self.old_hash != self.new_hash

    @property
    def is_case_only_rename(self) -> bool:
        """True for renames that only change letter case."""
        return (
            self.kind is ChangeKind.RENAMED
            and self.old_path is not None
            and self.new_path is not None
            and self.old_path.lower() == self.new_path.lower()
        )

    def describe(self) -> str:
        """One-line description used in verbose logs."""
        return (
            f"{self.old_path}({self.old_hash}:{_fmt_mode(self.old_mode)}) -> "
            f"{self.new_path}({self.new_hash}:{_fmt_mode(self.new_mode)}) "
            f"{getattr(self.kind, 'value', self.kind)}"
        )


def _fmt_mode(mode: int | None) -> str:
    return "-" if mode is None else format(mode, "o")


class CommitRange(BaseModel):
    """An ordered pair of source revisions reconciled in one step."""

    old_revision: str
    new_revision: str

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.old_revision[:8]}..{self.new_revision[:8]}"


class ApplyResult(BaseModel):
    """Outcome of applying a change list.

    Attributes:
        success: ``False`` if the apply was aborted.
        actions: Human-readable pending-change log (case-only renames are
            staged but never listed here).
        error: Reason the apply was aborted.
    """

    success: bool
    actions: list[str] = []
    error: str | None = None

    model_config = {"frozen": True}


class LoopState(str, Enum):
    """States of the one-way sync loop."""

    IDLE = "idle"
    FETCHING = "fetching"
    LOCKING = "locking"
    DIFFING = "diffing"
    APPLYING = "applying"
    CONFIRMING = "confirming"
    COMMITTING = "committing"
    SLEEPING = "sleeping"
    TERMINATED = "terminated"


class CycleOutcome(str, Enum):
    """How a single sync cycle ended."""

    NO_CHANGES = "no_changes"
    COMMITTED = "committed"
    SHELVED = "shelved"
    DECLINED = "declined"
    FAILED = "failed"


class CycleResult(BaseModel):
    """Aggregate result of one sync cycle.

    Attributes:
        outcome: How the cycle ended.
        checkpoint: Source revision known to be mirrored after the cycle.
        changesets: Destination changesets created, oldest first.
        error: Error text for failed cycles.
    """

    outcome: CycleOutcome
    checkpoint: str | None = None
    changesets: list[int] = []
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def terminal(self) -> bool:
        return self.outcome in (CycleOutcome.FAILED, CycleOutcome.DECLINED)


class PortingData(BaseModel):
    """Destination changesets not yet present in the source history.

    Simple case: ``[base] - [new1] - [new2]``.
    Race case: ``[missed_base] - [missed1] - [new_base] - [new1]``.

    Attributes:
        sha: Source commit the replay starts from.
        new_changes: Changesets observed after ``new_base``, oldest first.
        new_base: Changeset whose tree is the base for ``new_changes``.
        missed_changes: Changesets that raced in before ``new_base``,
            oldest first.
        missed_base: Changeset whose tree is the base for ``missed_changes``.
    """

    sha: str
    new_changes: list[Changeset] = []
    new_base: Changeset
    missed_changes: list[Changeset] = []
    missed_base: Changeset | None = None

    model_config = {"frozen": True}

    @property
    def empty(self) -> bool:
        return not self.new_changes and not self.missed_changes
