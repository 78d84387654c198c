"""Reverse pass: replay destination changesets as source commits.

``ChangesetReconciler`` finds destination changesets that have not reached
the source branch yet and replays them, oldest first, as synthetic commits
tagged ``[<cvcs>-changeset: N]``.  The resulting chain is written to the
pending branch for a human to merge.

Finding the work (``compute_porting_data``) walks a frozen history
snapshot newest to oldest:

* a changeset carrying a commit marker came *from* the source; the first
  one is ``new_base``, the second is ``missed_base`` and ends the walk
  (an ``is-initial-commit`` marker also ends it);
* a changeset with no mirrorable file is skipped;
* a mirrorable changeset already reachable from the branch head ends the
  walk and becomes the current base;
* anything else still needs porting.

Changesets found between ``missed_base`` and ``new_base`` raced with a
forward checkin.  They are replayed first, against ``missed_base``'s tree.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from vcs_mirror.core.git import GitRepository
from vcs_mirror.core.workspace import Changeset, Workspace
from vcs_mirror.errors import CheckpointNotFoundError, WorkspaceSyncError
from vcs_mirror.mirror.applier import ChangeApplier, TreeSink
from vcs_mirror.mirror.checkpoint import CheckpointMarkers
from vcs_mirror.mirror.filter import DEFAULT_FULL_MARKER, DEFAULT_PARTIAL_MARKER
from vcs_mirror.mirror.host import Host
from vcs_mirror.mirror.models import PortingData
from vcs_mirror.mirror.tree import TreeBuilder, diff_trees

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# User map
# ---------------------------------------------------------------------------


def load_user_map(path: str | Path) -> dict[str, str]:
    """Parse a ``name;Display Name;email`` file into author identities.

    Blank lines and lines starting with ``#`` are ignored.

    Returns:
        Mapping of destination user name to ``Display Name <email>``.

    Raises:
        ValueError: On malformed lines or duplicate user names.
    """
    users: dict[str, str] = {}
    with open(path, encoding="utf-8") as fh:
        for lineno, raw in enumerate(fh, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = [part.strip() for part in line.split(";")]
            if len(parts) != 3 or not all(parts):
                raise ValueError(
                    f"{path}:{lineno}: expected 'name;Display Name;email', got {line!r}"
                )
            name, display, email = parts
            key = name.lower()
            if key in users:
                raise ValueError(f"{path}:{lineno}: duplicate user '{name}'")
            users[key] = f"{display} <{email}>"
    logger.debug("Loaded %d user mapping(s) from %s", len(users), path)
    return users


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class ChangesetReconciler:
    """Port destination changesets onto the source branch.

    Args:
        repository: Source repository receiving synthetic commits.
        workspace: Destination working copy used to materialize changesets.
        tree_builder: Builds trees from the working copy.
        markers: Marker formats shared with the forward pass.
        host: Progress sink.
        user_map: Destination user name -> ``Name <email>``.
        default_author: Identity for unmapped owners.
        partial_marker: Marker mirroring one directory.
        full_marker: Marker mirroring a subtree.
    """

    def __init__(
        self,
        repository: GitRepository,
        workspace: Workspace,
        tree_builder: TreeBuilder,
        markers: CheckpointMarkers,
        host: Host,
        user_map: dict[str, str] | None = None,
        default_author: str = "vcs-mirror <vcs-mirror@localhost>",
        partial_marker: str = DEFAULT_PARTIAL_MARKER,
        full_marker: str = DEFAULT_FULL_MARKER,
    ) -> None:
        self.repository = repository
        self.workspace = workspace
        self.tree_builder = tree_builder
        self.markers = markers
        self.host = host
        self.user_map = {k.lower(): v for k, v in (user_map or {}).items()}
        self.default_author = default_author
        self.partial_marker = partial_marker
        self.full_marker = full_marker

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def snapshot_history(self) -> list[Changeset]:
        """Newest-first history pinned to the current head changeset.

        Pinning keeps later reads from picking up changesets submitted
        while a pass is running.
        """
        head = self.workspace.latest_changeset_id()
        return self.workspace.query_history(version_end=head, include_changes=True)

    def find_changeset_commit(self, head_sha: str, changeset_id: int) -> str | None:
        """Breadth-first search from *head_sha* for the commit tagged with
        *changeset_id*; returns its id or ``None``."""
        for commit in self.repository.walk_parents(head_sha):
            if self.markers.parse_changeset(commit.message) == changeset_id:
                return commit.sha
        return None

    def is_mirrorable(self, changeset: Changeset) -> bool:
        """Whether any file in *changeset* sits under an active marker.

        A partial marker counts only in the file's own directory; a full
        marker counts in any ancestor up to the server root.  Changesets
        made by the forward pass are never mirrorable, except the
        onboarding (``is-initial-commit``) changeset.
        """
        marker = self.markers.parse_commit(changeset.comment)
        if marker is not None:
            return marker.initial

        root = self.workspace.server_root.lower()
        checked: dict[tuple[str, str], bool] = {}

        def exists(directory: str, name: str) -> bool:
            key = (directory, name)
            if key not in checked:
                checked[key] = self.workspace.item_exists(
                    f"{directory}/{name}", changeset.changeset_id
                )
            return checked[key]

        for item in changeset.changes:
            if not item.is_file:
                continue
            file_dir = posixpath.dirname(item.server_path)
            if not (file_dir.lower() == root or file_dir.lower().startswith(root + "/")):
                continue
            directory = file_dir
            while True:
                if directory == file_dir and exists(directory, self.partial_marker):
                    return True
                if exists(directory, self.full_marker):
                    return True
                if directory.lower() == root or "/" not in directory:
                    break
                directory = posixpath.dirname(directory)
        return False

    def compute_porting_data(
        self, head_sha: str, history: Iterable[Changeset]
    ) -> PortingData:
        """Partition *history* (newest first) into changesets to replay.

        Raises:
            CheckpointNotFoundError: If the walk ends without finding a base.
        """
        new_changes: list[Changeset] = []
        missed_changes: list[Changeset] = []
        current = new_changes
        new_base: Changeset | None = None
        missed_base: Changeset | None = None
        sha: str | None = None

        for changeset in history:
            marker = self.markers.parse_commit(changeset.comment)
            if marker is not None:
                sha = sha or marker.sha
                if current is new_changes:
                    new_base = changeset
                    current = missed_changes
                else:
                    missed_base = changeset
                    break
                if marker.initial:
                    break
                continue

            if not self.is_mirrorable(changeset):
                self.host.verbose(
                    "Ignoring %d as it has no mirrorable files", changeset.changeset_id
                )
                continue

            commit_sha = self.find_changeset_commit(head_sha, changeset.changeset_id)
            if commit_sha is not None:
                sha = sha or commit_sha
                if current is new_changes:
                    new_base = changeset
                else:
                    missed_base = changeset
                break

            self.host.verbose("Need to port %d", changeset.changeset_id)
            current.append(changeset)

        if sha is None or new_base is None:
            raise CheckpointNotFoundError(
                "No ported or reachable changeset found in destination history"
            )
        if missed_changes and missed_base is None:
            raise CheckpointNotFoundError(
                f"Changesets raced with {new_base.changeset_id} but no earlier "
                "base was found in history"
            )

        new_changes.reverse()
        missed_changes.reverse()
        return PortingData(
            sha=sha,
            new_changes=new_changes,
            new_base=new_base,
            missed_changes=missed_changes,
            missed_base=missed_base,
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def build_tree_from_changeset(self, changeset: Changeset) -> str:
        """Sync the working copy to *changeset* and hash it into a tree."""
        status = self.workspace.sync_to(changeset.changeset_id)
        if not status.ok:
            raise WorkspaceSyncError(
                f"Syncing to {changeset.changeset_id} failed ({status})"
            )
        for warning in status.warnings:
            self.host.verbose("Sync warning: %s", warning)
        return self.tree_builder.from_workspace(self.workspace)

    def author_for(self, changeset: Changeset) -> str:
        return self.user_map.get(changeset.owner.lower(), self.default_author)

    def port_changes(
        self,
        base: Changeset | None,
        changes: list[Changeset],
        parent_sha: str,
    ) -> str:
        """Replay *changes* on top of *parent_sha*; returns the new tip.

        Each changeset's tree is diffed against its predecessor's (starting
        with *base*) and the diff is applied to the parent commit's tree.
        Changesets whose replay leaves the tree unchanged produce no commit.
        """
        if not changes:
            return parent_sha
        assert base is not None

        store = self.repository.object_store
        base_tree = self.build_tree_from_changeset(base)
        for changeset in changes:
            this_tree = self.build_tree_from_changeset(changeset)
            parent = self.repository.get_commit(parent_sha)

            sink = TreeSink(store, parent.tree)
            result = ChangeApplier(sink, self.host).apply(
                diff_trees(store, base_tree, this_tree)
            )
            if not result.success:
                raise WorkspaceSyncError(
                    result.error or f"Replaying {changeset.changeset_id} failed"
                )
            new_tree = sink.build()

            if new_tree != parent.tree:
                parent_sha = self.repository.create_commit(
                    new_tree,
                    [parent_sha],
                    self.markers.format_commit_message(
                        changeset.comment, changeset.changeset_id
                    ),
                    self.author_for(changeset),
                    author_time=_timestamp(changeset.created_at),
                )
                self.host.status(
                    "%d -> %s (%s)",
                    changeset.changeset_id,
                    parent_sha[:8],
                    self.author_for(changeset),
                )
            else:
                self.host.verbose(
                    "%d leaves the tree unchanged; no commit", changeset.changeset_id
                )
            base_tree = this_tree
        return parent_sha

    def port_from_cvcs(self, head_sha: str, pending_ref: str) -> str | None:
        """Replay unported changesets and point *pending_ref* at the result.

        Returns:
            The new tip, or ``None`` when nothing needed porting.
        """
        self.host.status("Starting %s -> %s port", self.markers.cvcs, self.markers.dvcs)
        history = self.snapshot_history()
        data = self.compute_porting_data(head_sha, history)
        if data.empty:
            self.host.status("Source is up to date with destination")
            return None

        self.host.verbose(
            "Porting %d new and %d missed change(s) onto %s",
            len(data.new_changes),
            len(data.missed_changes),
            data.sha[:8],
        )
        tip = self.port_changes(data.missed_base, data.missed_changes, data.sha)
        tip = self.port_changes(data.new_base, data.new_changes, tip)

        if tip == data.sha:
            self.host.status("Replaying changesets produced no new commits")
            return None

        self.repository.set_ref(pending_ref, tip)
        self.host.status("Created %s -> %s", pending_ref, tip[:8])
        return tip


def _timestamp(created_at: datetime | None) -> int | None:
    if created_at is None:
        return None
    return int(created_at.timestamp())
