"""Shelve a single source commit against the destination working copy.

Used to hand a commit to reviewers without checking it in: the working
copy is brought to latest, the commit's tree is applied on top, the
result is shelved as ``shelve-commit-<sha>`` and the working copy is
reverted.
"""

from __future__ import annotations

import logging

from vcs_mirror.core.git import GitRepository
from vcs_mirror.core.workspace import Workspace
from vcs_mirror.errors import PreconditionError, WorkspaceSyncError
from vcs_mirror.mirror.applier import ChangeApplier, WorkspaceSink
from vcs_mirror.mirror.engine import WorkspaceLock, shelve_and_undo
from vcs_mirror.mirror.host import Host
from vcs_mirror.mirror.tree import TreeBuilder, diff_trees

logger = logging.getLogger(__name__)

SHELVESET_PREFIX = "shelve-commit"


def shelve_commit(
    repository: GitRepository,
    workspace: Workspace,
    tree_builder: TreeBuilder,
    host: Host,
    commit_ref: str,
    dvcs_label: str = "git",
) -> str | None:
    """Shelve the changes needed to make the working copy match *commit_ref*.

    Returns:
        The shelveset name, or ``None`` if the working copy already matches.

    Raises:
        WorkspaceSyncError: If the working copy cannot be synced.
        PreconditionError: If the working copy has pending changes.
    """
    sha = repository.resolve_ref(commit_ref)
    commit = repository.get_commit(sha)

    with WorkspaceLock(workspace):
        status = workspace.sync_to_latest()
        if not status.ok:
            raise WorkspaceSyncError(f"Syncing working copy failed ({status})")

        host.status("Building %s tree", workspace.server_root)
        workspace_tree = tree_builder.from_workspace(workspace)
        host.status("Calculating diff")
        changes = diff_trees(
            repository.object_store, workspace_tree, tree_builder.from_history(commit.tree)
        )
        if not changes:
            host.status("Working copy already matches %s", sha[:8])
            return None

        host.status("Applying %s to working copy", sha[:8])
        sink = WorkspaceSink(workspace, repository.object_store, tree_builder.content_filter)
        result = ChangeApplier(sink, host).apply(changes)
        if not result.success:
            raise PreconditionError(result.error or f"Applying {sha} failed")

        name = f"{SHELVESET_PREFIX}-{sha}"
        comment = f"shelve of {dvcs_label.capitalize()} commit {sha}\n{commit.message}"
        host.status("Shelving to %s", name)
        shelve_and_undo(workspace, name, comment, workspace.get_pending_work())
        return name
