"""One-way sync loop: source history -> destination working copy.

``OneWayMirror`` drives repeated cycles:

1. Fetch the source remote and resolve the mirrored branch head.
2. Recover the checkpoint from destination history; sleep if unchanged.
3. Lock the mirrored path and sync the working copy to latest.
4. Linearize ``checkpoint..head`` into ranges and, oldest first, diff the
   cached workspace tree against each range head, apply, optionally
   confirm, and check in with a commit marker.
5. Release the lock on every exit path.

Only the "no changes" outcome loops on its own.  Every ``MirrorError``
is reported through the host's error channel and stops the run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from vcs_mirror.config_schema import MirrorPolicyConfig
from vcs_mirror.core.git import GitRepository
from vcs_mirror.core.workspace import (
    LockLevel,
    PendingChange,
    Workspace,
)
from vcs_mirror.errors import (
    CheckinConflictError,
    CheckpointError,
    MirrorError,
    PreconditionError,
    WorkspaceSyncError,
)
from vcs_mirror.mirror.applier import ChangeApplier, WorkspaceSink
from vcs_mirror.mirror.checkpoint import CheckpointMarkers, find_last_mirrored_sha
from vcs_mirror.mirror.filter import MirrorFilter
from vcs_mirror.mirror.host import Host
from vcs_mirror.mirror.models import (
    CommitRange,
    CycleOutcome,
    CycleResult,
    LoopState,
)
from vcs_mirror.mirror.tree import ContentFilter, TreeBuilder, diff_trees

logger = logging.getLogger(__name__)


def linearize_range(
    repository: GitRepository, checkpoint: str, head: str
) -> list[CommitRange]:
    """Split ``checkpoint..head`` into ranges, oldest first.

    Walks first parents back from *head*, emitting one single-commit range
    per step.  On reaching a merge before *checkpoint*, the rest of the
    history collapses into one ``(checkpoint, merge)`` range.

    Raises:
        CheckpointError: A root commit was reached without passing
            *checkpoint*, so it is not an ancestor of *head*.
    """
    ranges: list[CommitRange] = []
    current = head
    while current != checkpoint:
        commit = repository.get_commit(current)
        if not commit.parents:
            raise CheckpointError(
                f"Checkpoint {checkpoint[:8]} is not an ancestor of {head[:8]}"
            )
        if len(commit.parents) > 1:
            ranges.append(CommitRange(old_revision=checkpoint, new_revision=current))
            break
        parent = commit.parents[0]
        ranges.append(CommitRange(old_revision=parent, new_revision=current))
        current = parent
    ranges.reverse()
    return ranges


def build_tree_builder(
    repository: GitRepository, policy: MirrorPolicyConfig
) -> TreeBuilder:
    """Create the ``TreeBuilder`` described by *policy*."""
    mirror_filter = None
    if policy.use_mirror_filter:
        mirror_filter = MirrorFilter(policy.partial_marker, policy.full_marker)
    return TreeBuilder(
        repository.object_store,
        mirror_filter=mirror_filter,
        content_filter=ContentFilter(policy.line_endings),
        executable_extensions=policy.executable_extensions,
    )


def submit(workspace: Workspace, pending: list[PendingChange], comment: str) -> int:
    """Check in *pending*; a conflict must name the conflicting paths.

    Raises:
        CheckinConflictError: Concurrent edits conflicted.
        PreconditionError: A conflict was reported without any paths.
    """
    try:
        return workspace.checkin(pending, comment)
    except CheckinConflictError as exc:
        if not exc.conflicts:
            raise PreconditionError(
                f"Checkin conflict reported without conflicting paths: {exc}"
            ) from exc
        raise


def shelve_and_undo(
    workspace: Workspace, name: str, comment: str, pending: list[PendingChange]
) -> None:
    """Shelve *pending* for review and revert the working copy."""
    workspace.shelve(name, comment, pending)
    undone = workspace.undo(pending)
    if undone != len(pending):
        raise PreconditionError(
            f"Undid {undone} of {len(pending)} pending changes after shelving {name}"
        )


class WorkspaceLock:
    """Scoped advisory lock on the mirrored path.

    Released on every exit from the ``with`` block.  Checkins drop locks
    on committed paths, so ``renew()`` takes it again afterwards.
    """

    def __init__(self, workspace: Workspace, path: str = "") -> None:
        self.workspace = workspace
        self.path = path
        self.held = False

    def __enter__(self) -> WorkspaceLock:
        self.workspace.set_lock(self.path, LockLevel.CHECKIN)
        self.held = True
        logger.debug("Locked %s", self.workspace.server_path(self.path))
        return self

    def renew(self) -> None:
        self.workspace.set_lock(self.path, LockLevel.CHECKIN)
        self.held = True

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.held:
            return
        self.held = False
        try:
            self.workspace.set_lock(self.path, LockLevel.NONE)
        except MirrorError:
            if exc_type is None:
                raise
            # Keep the original failure as the one reported.
            logger.exception(
                "Failed to release lock on %s", self.workspace.server_path(self.path)
            )
        else:
            logger.debug("Released %s", self.workspace.server_path(self.path))


class OneWayMirror:
    """Mirror a source branch into a destination working copy.

    Args:
        repository: Source history provider.
        workspace: Destination working copy (rooted at the mirrored path).
        policy: Loop behavior (intervals, confirmation, filters).
        host: Progress and confirmation sink.
        remote: Source remote to fetch.
        branch: Source branch to mirror.
        commit_url_base: Web URL used for ``commit-url`` markers.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        repository: GitRepository,
        workspace: Workspace,
        policy: MirrorPolicyConfig,
        host: Host,
        remote: str = "origin",
        branch: str = "master",
        commit_url_base: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.workspace = workspace
        self.policy = policy
        self.host = host
        self.remote = remote
        self.branch = branch
        self.commit_url_base = commit_url_base
        self._sleep = sleep

        self.markers = CheckpointMarkers(policy.dvcs_label, policy.cvcs_label)
        self.tree_builder = build_tree_builder(repository, policy)
        self.state = LoopState.IDLE
        # Tree id matching the working copy after the last successful apply.
        self.tree_cache: str | None = None
        # Source head whose ranges were all ported, including ranges that
        # produced no checkin and so left the checkpoint behind.
        self.examined_head: str | None = None

    @property
    def source_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def run(self, max_cycles: int | None = None) -> int:
        """Loop until a cycle stops the run or *max_cycles* is reached.

        Returns:
            Process exit code: ``1`` if the last cycle failed, else ``0``.
        """
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            cycles += 1
            result = self.run_cycle()
            if result.outcome is CycleOutcome.FAILED:
                return 1
            if result.outcome in (CycleOutcome.DECLINED, CycleOutcome.SHELVED):
                self.state = LoopState.TERMINATED
                return 0
            if result.outcome is CycleOutcome.NO_CHANGES and (
                max_cycles is None or cycles < max_cycles
            ):
                self.state = LoopState.SLEEPING
                self.host.verbose(
                    "Sleeping %d seconds", self.policy.poll_interval
                )
                self._sleep(self.policy.poll_interval)
        self.state = LoopState.TERMINATED
        return 0

    def run_cycle(self) -> CycleResult:
        """Run one fetch/compare/apply/checkin cycle.

        Never raises ``MirrorError``; failures come back as
        ``CycleOutcome.FAILED`` after being reported to the host.
        """
        try:
            return self._cycle()
        except CheckinConflictError as exc:
            self.state = LoopState.TERMINATED
            self.host.error(
                "Checkin conflicted with concurrent edits (%s): %s",
                ", ".join(exc.conflicts) or "no paths reported",
                exc,
            )
            return CycleResult(outcome=CycleOutcome.FAILED, error=str(exc))
        except MirrorError as exc:
            self.state = LoopState.TERMINATED
            self.host.error("%s", exc)
            return CycleResult(outcome=CycleOutcome.FAILED, error=str(exc))

    # ------------------------------------------------------------------
    # Cycle steps
    # ------------------------------------------------------------------

    def _cycle(self) -> CycleResult:
        self.state = LoopState.FETCHING
        self.host.verbose("Fetching %s", self.remote)
        self.repository.fetch_latest(self.remote)
        head = self.repository.resolve_ref(self.source_ref)

        checkpoint = find_last_mirrored_sha(
            self.workspace, self.markers, self.policy.history_lookback
        ).sha
        if head in (checkpoint, self.examined_head):
            self.host.verbose("No changes since %s", head[:8])
            self.state = LoopState.IDLE
            return CycleResult(outcome=CycleOutcome.NO_CHANGES, checkpoint=checkpoint)
        self._check_ancestry(checkpoint, head)

        self.state = LoopState.LOCKING
        with WorkspaceLock(self.workspace) as lock:
            self._sync_workspace()

            ranges = linearize_range(self.repository, checkpoint, head)
            self.host.status(
                "Porting %d range(s) %s..%s", len(ranges), checkpoint[:8], head[:8]
            )

            changesets: list[int] = []
            for commit_range in ranges:
                outcome, changeset_id = self._port_range(commit_range)
                if changeset_id is not None:
                    changesets.append(changeset_id)
                    checkpoint = commit_range.new_revision
                    lock.renew()
                if outcome is not CycleOutcome.COMMITTED:
                    self.state = LoopState.IDLE
                    return CycleResult(
                        outcome=outcome, checkpoint=checkpoint, changesets=changesets
                    )

        self.state = LoopState.IDLE
        self.examined_head = head
        outcome = CycleOutcome.COMMITTED if changesets else CycleOutcome.NO_CHANGES
        return CycleResult(outcome=outcome, checkpoint=checkpoint, changesets=changesets)

    def _check_ancestry(self, checkpoint: str, head: str) -> None:
        """Refuse to port from a checkpoint the source branch does not contain.

        Raises:
            CheckpointError: If *checkpoint* is unknown locally or is not an
                ancestor of *head* (e.g. after a force push).
        """
        try:
            self.repository.get_commit(checkpoint)
        except PreconditionError as exc:
            raise CheckpointError(
                f"Checkpoint {checkpoint} is not in the source repository: {exc}"
            ) from exc
        if not any(
            commit.sha == checkpoint for commit in self.repository.walk_parents(head)
        ):
            raise CheckpointError(
                f"Checkpoint {checkpoint[:8]} is not an ancestor of "
                f"{self.source_ref} ({head[:8]}); refusing to pick a starting point"
            )

    def _sync_workspace(self) -> None:
        status = self.workspace.sync_to_latest()
        if not status.ok:
            self.tree_cache = None
            raise WorkspaceSyncError(
                f"Syncing working copy failed ({status}): "
                + ", ".join(status.conflicts + status.failures)
            )
        for warning in status.warnings:
            self.host.verbose("Sync warning: %s", warning)
        if not status.no_action_needed:
            self.tree_cache = None

        unexpected = self.workspace.get_pending_work()
        if unexpected:
            raise PreconditionError(
                f"Working copy has {len(unexpected)} unexplained pending "
                f"change(s): " + ", ".join(c.path for c in unexpected[:5])
            )

    def _port_range(
        self, commit_range: CommitRange
    ) -> tuple[CycleOutcome, int | None]:
        """Apply and submit one range.

        Returns:
            The outcome and the new changeset id (``None`` when nothing
            was checked in).
        """
        self.state = LoopState.DIFFING
        if self.tree_cache is None:
            self.tree_cache = self.tree_builder.from_workspace(self.workspace)
        target = self.repository.get_commit(commit_range.new_revision)
        target_tree = self.tree_builder.from_history(target.tree)

        changes = diff_trees(self.repository.object_store, self.tree_cache, target_tree)
        if not changes:
            self.host.status("No file changes in %s", commit_range)
            return CycleOutcome.COMMITTED, None

        self.state = LoopState.APPLYING
        self.host.status("Applying %s (%d change(s))", commit_range, len(changes))
        sink = WorkspaceSink(
            self.workspace,
            self.repository.object_store,
            self.tree_builder.content_filter,
        )
        base_tree = self.tree_cache
        result = ChangeApplier(sink, self.host).apply(changes)
        # The working copy no longer matches the cache from here on.
        self.tree_cache = None
        if not result.success:
            raise PreconditionError(result.error or f"Applying {commit_range} failed")
        for action in result.actions:
            self.host.verbose("  %s", action)

        pending = self.workspace.get_pending_work()
        if not pending:
            self.host.status("No pending changes for %s", commit_range)
            self.tree_cache = target_tree
            return CycleOutcome.COMMITTED, None

        comment = self.markers.format_checkin_message(
            commit_range.old_revision,
            commit_range.new_revision,
            self.commit_url_base,
        )

        if self.policy.confirm:
            self.state = LoopState.CONFIRMING
            name = f"{self.policy.confirm_shelve_prefix}-{commit_range.new_revision}"
            self.workspace.shelve(name, comment, pending)
            if not self.host.confirm_checkin(name):
                self.host.status("Checkin of %s declined; undoing", name)
                self.workspace.undo(pending)
                self.tree_cache = base_tree
                return CycleOutcome.DECLINED, None

        if not self.policy.submit:
            name = f"{self.policy.review_shelve_prefix}-{commit_range.new_revision}"
            shelve_and_undo(self.workspace, name, comment, pending)
            self.tree_cache = base_tree
            self.host.status("Shelved changes as %s", name)
            return CycleOutcome.SHELVED, None

        self.state = LoopState.COMMITTING
        changeset_id = submit(self.workspace, pending, comment)

        self.tree_cache = target_tree
        self.host.status(
            "Checked in %s as changeset %d", commit_range.new_revision[:8], changeset_id
        )
        return CycleOutcome.COMMITTED, changeset_id
