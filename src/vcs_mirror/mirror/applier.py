"""Apply ``ChangeEntry`` lists to a sink.

One applier serves both sync directions:

- ``WorkspaceSink`` materializes blobs into the destination working copy
  and stages pending changes there (source -> destination);
- ``TreeSink`` edits an in-memory tree definition seeded from a commit
  (destination -> source).

The per-kind rules live in ``ChangeApplier`` only, so both directions
interpret a diff identically.
"""

from __future__ import annotations

import logging
from typing import Protocol

from dulwich.index import commit_tree
from dulwich.object_store import BaseObjectStore, iter_tree_contents

from vcs_mirror.core.git import from_object_id, to_object_id
from vcs_mirror.core.workspace import Workspace
from vcs_mirror.errors import PreconditionError
from vcs_mirror.file_handler import validate_relative_path, write_file_atomic
from vcs_mirror.mirror.host import Host
from vcs_mirror.mirror.models import ApplyResult, ChangeEntry, ChangeKind
from vcs_mirror.mirror.tree import EXECUTABLE_MODE, ContentFilter

logger = logging.getLogger(__name__)


class ChangeSink(Protocol):
    """Target of a change application.

    ``report_demotions`` selects the host channel for demoted adds and
    renames: the error channel when set, the verbose channel otherwise.
    """

    report_demotions: bool

    def check_preconditions(self) -> None: ...

    def exists(self, path: str) -> bool: ...

    def add(self, path: str, sha: str, mode: int) -> None: ...

    def delete(self, path: str) -> None: ...

    def rename(self, old_path: str, new_path: str) -> None: ...

    def edit(self, path: str, sha: str, mode: int, rewrite: bool) -> None: ...


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class WorkspaceSink:
    """Stage changes in a destination working copy.

    Args:
        workspace: The destination working copy.
        store: Object store holding the blobs to write.
        content_filter: Transform applied to blob bytes before writing.
    """

    report_demotions = True

    def __init__(
        self,
        workspace: Workspace,
        store: BaseObjectStore,
        content_filter: ContentFilter | None = None,
    ) -> None:
        self.workspace = workspace
        self.store = store
        self.content_filter = content_filter or ContentFilter()

    def check_preconditions(self) -> None:
        unexpected = self.workspace.get_pending_work()
        if unexpected:
            paths = ", ".join(change.path for change in unexpected[:5])
            raise PreconditionError(
                f"Working copy has {len(unexpected)} unexpected pending "
                f"change(s): {paths}"
            )

    def exists(self, path: str) -> bool:
        return self.workspace.local_path(path).exists()

    def _write(self, path: str, sha: str, mode: int, overwrite: bool) -> None:
        try:
            validate_relative_path(path)
        except ValueError as exc:
            raise PreconditionError(f"Refusing to write {path!r}: {exc}") from exc
        data = self.content_filter.smudge(
            self.store[to_object_id(sha)].as_raw_string()
        )
        try:
            write_file_atomic(
                self.workspace.local_path(path),
                data,
                overwrite=overwrite,
                executable=mode == EXECUTABLE_MODE,
            )
        except FileExistsError as exc:
            raise PreconditionError(str(exc)) from exc

    def add(self, path: str, sha: str, mode: int) -> None:
        self._write(path, sha, mode, overwrite=False)
        self.workspace.pend_add(path)

    def delete(self, path: str) -> None:
        self.workspace.pend_delete(path)

    def rename(self, old_path: str, new_path: str) -> None:
        self.workspace.pend_rename(old_path, new_path)

    def edit(self, path: str, sha: str, mode: int, rewrite: bool) -> None:
        # Modes are not versioned on the destination; only content edits pend.
        if not rewrite:
            return
        self.workspace.pend_edit(path)
        self._write(path, sha, mode, overwrite=True)


class TreeSink:
    """Edit a flat path -> (mode, blob) definition seeded from a tree.

    Args:
        store: Object store holding the base tree and receiving the result.
        base_tree: Tree id to start from, or ``None`` for an empty tree.
    """

    report_demotions = False

    def __init__(self, store: BaseObjectStore, base_tree: str | None) -> None:
        self.store = store
        self.entries: dict[str, tuple[int, str]] = {}
        if base_tree:
            for entry in iter_tree_contents(store, to_object_id(base_tree)):
                self.entries[entry.path.decode("utf-8")] = (
                    entry.mode,
                    from_object_id(entry.sha),
                )

    def check_preconditions(self) -> None:
        pass

    def exists(self, path: str) -> bool:
        return path in self.entries

    def add(self, path: str, sha: str, mode: int) -> None:
        self.entries[path] = (mode, sha)

    def delete(self, path: str) -> None:
        if self.entries.pop(path, None) is None:
            logger.warning("Delete of %s: not present in base tree", path)

    def rename(self, old_path: str, new_path: str) -> None:
        self.entries[new_path] = self.entries.pop(old_path)

    def edit(self, path: str, sha: str, mode: int, rewrite: bool) -> None:
        self.entries[path] = (mode, sha)

    def build(self) -> str:
        """Write the definition as a tree and return its id."""
        items = [
            (path.encode("utf-8"), to_object_id(sha), mode)
            for path, (mode, sha) in sorted(self.entries.items())
        ]
        return from_object_id(commit_tree(self.store, items))


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


class ChangeApplier:
    """Replay a change list onto a sink.

    Args:
        sink: Where changes are staged.
        host: Receives progress and demoted add or rename reports.
    """

    def __init__(self, sink: ChangeSink, host: Host) -> None:
        self.sink = sink
        self.host = host

    def apply(self, changes: list[ChangeEntry]) -> ApplyResult:
        """Apply *changes* in order.

        Returns:
            ``ApplyResult`` with ``success=False`` if an entry of an
            unknown kind was encountered; entries before it stay staged.

        Raises:
            PreconditionError: If the sink already has pending changes, or
                a file cannot be written.
        """
        self.sink.check_preconditions()
        actions: list[str] = []

        for change in changes:
            self.host.verbose("Pending change: %s", change.describe())
            kind = change.kind
            if kind is ChangeKind.ADDED:
                self._apply_add(change, actions)
            elif kind is ChangeKind.DELETED:
                self.sink.delete(change.old_path)
                actions.append(f"delete {change.old_path}")
            elif kind is ChangeKind.RENAMED and not self.sink.exists(change.old_path):
                self._demoted(
                    "Pending rename source %s is missing; adding %s",
                    change.old_path,
                    change.new_path,
                )
                self._apply_add(change, actions)
            elif kind is ChangeKind.RENAMED:
                self.sink.rename(change.old_path, change.new_path)
                if not change.is_case_only_rename:
                    actions.append(f"rename {change.old_path} -> {change.new_path}")
                if change.content_changed or change.old_mode != change.new_mode:
                    self.sink.edit(
                        change.new_path,
                        change.new_hash,
                        change.new_mode,
                        rewrite=change.content_changed,
                    )
                    if change.content_changed:
                        actions.append(f"edit {change.new_path}")
            elif kind is ChangeKind.MODIFIED:
                self.sink.edit(
                    change.new_path,
                    change.new_hash,
                    change.new_mode,
                    rewrite=change.content_changed,
                )
                if change.content_changed:
                    actions.append(f"edit {change.new_path}")
            else:
                message = f"Unknown change kind {kind!r} for {change.path}"
                logger.error(message)
                return ApplyResult(success=False, actions=actions, error=message)

        return ApplyResult(success=True, actions=actions)

    def _demoted(self, fmt: str, *args: object) -> None:
        if self.sink.report_demotions:
            self.host.error(fmt, *args)
        else:
            self.host.verbose(fmt, *args)

    def _apply_add(self, change: ChangeEntry, actions: list[str]) -> None:
        path = change.new_path
        if change.new_hash is None or change.new_mode is None:
            raise PreconditionError(f"No content recorded for {path}")
        if self.sink.exists(path):
            self._demoted("Pending add found existing file %s", path)
            self.sink.edit(path, change.new_hash, change.new_mode, rewrite=True)
            actions.append(f"edit {path}")
        else:
            self.sink.add(path, change.new_hash, change.new_mode)
            actions.append(f"add {path}")
