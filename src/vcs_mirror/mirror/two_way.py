"""Bidirectional mirror: reverse pass, then a guarded forward pass."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from vcs_mirror.config_schema import MirrorPolicyConfig
from vcs_mirror.core.git import GitRepository
from vcs_mirror.core.workspace import Workspace
from vcs_mirror.errors import (
    CheckinConflictError,
    CheckpointNotFoundError,
    MirrorError,
    PreconditionError,
    WorkspaceSyncError,
)
from vcs_mirror.mirror.applier import ChangeApplier, WorkspaceSink
from vcs_mirror.mirror.checkpoint import CheckpointMarkers
from vcs_mirror.mirror.engine import (
    WorkspaceLock,
    build_tree_builder,
    shelve_and_undo,
    submit,
)
from vcs_mirror.mirror.host import Host
from vcs_mirror.mirror.models import CycleOutcome, CycleResult
from vcs_mirror.mirror.reconciler import ChangesetReconciler
from vcs_mirror.mirror.tree import diff_trees

logger = logging.getLogger(__name__)


class TwoWayMirror:
    """Keep a source branch and a destination path in sync both ways.

    Each iteration first replays destination changesets onto the pending
    branch, then ports the source head to the destination, but only once
    the newest mirrorable changeset is reachable from the branch head
    (i.e. the pending branch has been merged).

    Args:
        repository: Source repository.
        workspace: Destination working copy.
        policy: Loop behavior.
        host: Progress and confirmation sink.
        remote: Source remote to fetch.
        branch: Source branch to mirror.
        pending_branch: Branch receiving replayed changesets.
        user_map: Destination user -> ``Name <email>``.
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
        pending_branch: str = "from-svn",
        user_map: dict[str, str] | None = None,
        commit_url_base: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.workspace = workspace
        self.policy = policy
        self.host = host
        self.remote = remote
        self.branch = branch
        self.pending_ref = f"refs/heads/{pending_branch}"
        self.commit_url_base = commit_url_base
        self._sleep = sleep

        self.markers = CheckpointMarkers(policy.dvcs_label, policy.cvcs_label)
        self.tree_builder = build_tree_builder(repository, policy)
        self.reconciler = ChangesetReconciler(
            repository,
            workspace,
            self.tree_builder,
            self.markers,
            host,
            user_map=user_map,
            default_author=policy.default_author,
            partial_marker=policy.partial_marker,
            full_marker=policy.full_marker,
        )

    @property
    def source_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    def run(self, max_iterations: int | None = None) -> int:
        """Iterate until a failure or *max_iterations*; returns an exit code."""
        iterations = 0
        while max_iterations is None or iterations < max_iterations:
            iterations += 1
            result = self.run_iteration()
            if result.outcome is CycleOutcome.FAILED:
                return 1
            if max_iterations is None or iterations < max_iterations:
                self.host.verbose(
                    "Iteration complete; sleeping %d seconds",
                    self.policy.two_way_poll_interval,
                )
                self._sleep(self.policy.two_way_poll_interval)
        return 0

    def run_iteration(self) -> CycleResult:
        try:
            self.repository.fetch_latest(self.remote)
            head = self.repository.resolve_ref(self.source_ref)
            self.reconciler.port_from_cvcs(head, self.pending_ref)
            return self.port_to_cvcs(head)
        except CheckinConflictError as exc:
            self.host.error(
                "Checkin conflicted with concurrent edits (%s): %s",
                ", ".join(exc.conflicts) or "no paths reported",
                exc,
            )
            return CycleResult(outcome=CycleOutcome.FAILED, error=str(exc))
        except MirrorError as exc:
            self.host.error("%s", exc)
            return CycleResult(outcome=CycleOutcome.FAILED, error=str(exc))

    def port_to_cvcs(self, head: str) -> CycleResult:
        """Port the whole head tree to the destination in one checkin."""
        self.host.status("Starting %s -> %s port", self.markers.dvcs, self.markers.cvcs)
        history = self.reconciler.snapshot_history()
        if not history:
            raise CheckpointNotFoundError("Destination history is empty")
        tip = history[0]

        newest = next((c for c in history if self.reconciler.is_mirrorable(c)), None)
        if newest is not None and (
            self.reconciler.find_changeset_commit(head, newest.changeset_id) is None
        ):
            self.host.status(
                "%d is missing from the source branch; not porting to destination",
                newest.changeset_id,
            )
            return CycleResult(outcome=CycleOutcome.NO_CHANGES)

        base_marker = next(
            (
                marker
                for marker in (self.markers.parse_commit(c.comment) for c in history)
                if marker is not None
            ),
            None,
        )

        with WorkspaceLock(self.workspace):
            status = self.workspace.sync_to(tip.changeset_id)
            if not status.ok or status.warnings:
                raise WorkspaceSyncError(
                    f"Syncing working copy to {tip.changeset_id} failed ({status})"
                )

            workspace_tree = self.tree_builder.from_workspace(self.workspace)
            head_tree = self.tree_builder.from_history(
                self.repository.get_commit(head).tree
            )
            changes = diff_trees(self.repository.object_store, workspace_tree, head_tree)
            if not changes:
                self.host.status("Destination is up to date with source")
                return CycleResult(outcome=CycleOutcome.NO_CHANGES)

            sink = WorkspaceSink(
                self.workspace,
                self.repository.object_store,
                self.tree_builder.content_filter,
            )
            result = ChangeApplier(sink, self.host).apply(changes)
            if not result.success:
                raise PreconditionError(result.error or "Applying head tree failed")

            pending = self.workspace.get_pending_work()
            if not pending:
                self.host.status("Destination is up to date with source")
                return CycleResult(outcome=CycleOutcome.NO_CHANGES)

            comment = self.markers.format_checkin_message(
                base_marker.sha if base_marker else None, head, self.commit_url_base
            )

            if not self.policy.submit:
                name = f"{self.policy.review_shelve_prefix}-{head}"
                shelve_and_undo(self.workspace, name, comment, pending)
                self.host.status("Shelved changes as %s", name)
                return CycleResult(outcome=CycleOutcome.SHELVED, checkpoint=head)

            changeset_id = submit(self.workspace, pending, comment)
            self.host.status("Submitted %d", changeset_id)
            return CycleResult(
                outcome=CycleOutcome.COMMITTED,
                checkpoint=head,
                changesets=[changeset_id],
            )
