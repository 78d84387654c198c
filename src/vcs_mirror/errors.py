"""Error taxonomy for the mirror engine.

Every failure that stops a cycle is a ``MirrorError``.  The categories map
to how the sync loop reacts:

- ``FetchError`` -- connectivity to the source remote (auth, network,
  malformed URL).  Carries a user-actionable ``hint``.
- ``PreconditionError`` -- a defect: unexpected pending changes, unknown
  change kind, broken lock or filter invariant.  The engine stops rather
  than guessing a recovery.
- ``WorkspaceSyncError`` -- the working copy could not be brought to the
  requested version cleanly.
- ``CheckpointError`` -- the last mirrored position cannot be determined.
- ``CheckinError`` / ``CheckinConflictError`` -- the destination rejected a
  submission.  Conflicts are never auto-resolved or retried.

The only non-error outcome that loops is "no changes", which is not an
exception at all.
"""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for all fatal mirror conditions."""


class FetchError(MirrorError):
    """The source remote could not be fetched."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        text = super().__str__()
        if self.hint:
            return f"{text} ({self.hint})"
        return text


class PreconditionError(MirrorError):
    """A programming-contract violation was detected."""


class MirrorFilterError(PreconditionError):
    """A tree handed to the mirror filter has no marker at its root."""


class WorkspaceSyncError(MirrorError):
    """Syncing the destination working copy reported conflicts or failures."""


class CheckpointError(MirrorError):
    """The sync position could not be recovered from destination history."""


class CheckpointNotFoundError(CheckpointError):
    """No commit marker was found within the lookback window."""


class AmbiguousMarkerError(CheckpointError):
    """A single comment carries more than one distinct commit marker."""


class CheckinError(MirrorError):
    """The destination refused a checkin."""


class CheckinConflictError(CheckinError):
    """A checkin failed because of intervening concurrent edits.

    Attributes:
        conflicts: Paths the destination reported as conflicting.
    """

    def __init__(self, message: str, conflicts: list[str] | None = None) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts or [])
