"""Mirror synchronization engine.

Public API for mirroring a git branch into a centralized working copy
and replaying centralized changesets back as git commits.

Architecture
------------
Both sides are normalized into dulwich trees in the source object store.
A sync step is always "diff two trees, apply the diff to a sink": the
destination working copy in the forward direction, an in-memory tree
definition in the reverse direction.  The only persisted state is the
marker text stamped into destination changesets and synthetic commits.

Modules:

- ``engine``     -- ``OneWayMirror``: the poll/lock/apply/checkin loop.
- ``two_way``    -- ``TwoWayMirror``: reverse pass then guarded forward pass.
- ``reconciler`` -- ``ChangesetReconciler``: reachability and partition of
  destination changesets to replay.
- ``applier``    -- ``ChangeApplier`` with ``WorkspaceSink`` / ``TreeSink``.
- ``tree``       -- ``TreeBuilder``, ``ContentFilter``, ``diff_trees``.
- ``filter``     -- ``MirrorFilter``: ``.gitmirror`` / ``.gitmirrorall``.
- ``checkpoint`` -- marker formatting/parsing and checkpoint recovery.
- ``shelve``     -- ``shelve_commit``: shelve one commit for review.
- ``host``       -- ``NullHost``, ``ConsoleHost``, ``ReportingHost``.
- ``models``     -- ``ChangeEntry``, ``CommitRange``, ``PortingData``, ...
- ``vcs_mirror.errors`` -- ``MirrorError`` taxonomy (re-exported here).

Usage example
-------------
::

    from vcs_mirror.config_schema import MirrorPolicyConfig
    from vcs_mirror.core.git import GitRepository
    from vcs_mirror.core.svn import SvnWorkspace
    from vcs_mirror.mirror import ConsoleHost, OneWayMirror

    mirror = OneWayMirror(
        repository=GitRepository.open("/srv/mirror/repo"),
        workspace=SvnWorkspace(
            "/srv/mirror/wc", "/trunk", repository_url="https://svn.example.com/repo"
        ),
        policy=MirrorPolicyConfig(poll_interval=60),
        host=ConsoleHost(verbose=True),
    )
    raise SystemExit(mirror.run())
"""

from vcs_mirror.core.git import CommitInfo
from vcs_mirror.errors import (
    AmbiguousMarkerError,
    CheckinConflictError,
    CheckinError,
    CheckpointError,
    CheckpointNotFoundError,
    FetchError,
    MirrorError,
    MirrorFilterError,
    PreconditionError,
    WorkspaceSyncError,
)

from .applier import ChangeApplier, TreeSink, WorkspaceSink
from .checkpoint import CheckpointMarkers, CommitMarker, find_last_mirrored_sha
from .engine import OneWayMirror, WorkspaceLock, linearize_range
from .filter import MirrorFilter
from .host import ConsoleHost, NullHost, ReportingHost, WebhookNotifier
from .models import (
    ApplyResult,
    ChangeEntry,
    ChangeKind,
    CommitRange,
    CycleOutcome,
    CycleResult,
    LoopState,
    PortingData,
)
from .reconciler import ChangesetReconciler, load_user_map
from .shelve import shelve_commit
from .tree import ContentFilter, TreeBuilder, diff_trees
from .two_way import TwoWayMirror

__all__ = [
    "AmbiguousMarkerError",
    "ApplyResult",
    "ChangeApplier",
    "ChangeEntry",
    "ChangeKind",
    "ChangesetReconciler",
    "CheckinConflictError",
    "CheckinError",
    "CheckpointError",
    "CheckpointMarkers",
    "CheckpointNotFoundError",
    "CommitInfo",
    "CommitMarker",
    "CommitRange",
    "ConsoleHost",
    "ContentFilter",
    "CycleOutcome",
    "CycleResult",
    "FetchError",
    "LoopState",
    "MirrorError",
    "MirrorFilter",
    "MirrorFilterError",
    "NullHost",
    "OneWayMirror",
    "PortingData",
    "PreconditionError",
    "ReportingHost",
    "TreeBuilder",
    "TreeSink",
    "TwoWayMirror",
    "WebhookNotifier",
    "WorkspaceLock",
    "WorkspaceSink",
    "WorkspaceSyncError",
    "diff_trees",
    "find_last_mirrored_sha",
    "linearize_range",
    "load_user_map",
    "shelve_commit",
]
