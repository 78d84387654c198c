"""Tree construction and diffing.

Both sides of a sync are normalized into dulwich trees in the source
repository's object store:

- ``TreeBuilder.from_workspace`` hashes the destination working copy;
- ``TreeBuilder.from_history`` takes a commit's tree (optionally filtered);
- ``diff_trees`` turns a pair of trees into ``ChangeEntry`` records.

``ContentFilter`` is the single place line-ending normalization happens:
*clean* on the way into the object store, *smudge* on the way out to disk.
"""

from __future__ import annotations

import logging
import stat
from collections.abc import Sequence

from dulwich.diff_tree import (
    CHANGE_ADD,
    CHANGE_COPY,
    CHANGE_DELETE,
    CHANGE_MODIFY,
    CHANGE_RENAME,
    RenameDetector,
    tree_changes,
)
from dulwich.index import commit_tree
from dulwich.line_ending import convert_crlf_to_lf, convert_lf_to_crlf
from dulwich.object_store import BaseObjectStore
from dulwich.objects import S_ISGITLINK, Blob

from vcs_mirror.core.git import from_object_id, to_object_id
from vcs_mirror.core.workspace import Workspace
from vcs_mirror.file_handler import walk_files
from vcs_mirror.mirror.filter import MirrorFilter
from vcs_mirror.mirror.models import ChangeEntry, ChangeKind

logger = logging.getLogger(__name__)

REGULAR_MODE = 0o100644
EXECUTABLE_MODE = 0o100755

LINE_ENDING_MODES = ("none", "crlf")


class ContentFilter:
    """Line-ending transform applied between disk and object store.

    Args:
        line_endings: ``"none"`` leaves bytes untouched; ``"crlf"`` stores
            LF in the object store and writes CRLF to the working copy.
            Binary content (containing NUL) is never converted.
    """

    def __init__(self, line_endings: str = "none") -> None:
        if line_endings not in LINE_ENDING_MODES:
            raise ValueError(
                f"Invalid line_endings '{line_endings}': must be one of "
                f"{', '.join(LINE_ENDING_MODES)}"
            )
        self.line_endings = line_endings

    def clean(self, data: bytes) -> bytes:
        """Working copy bytes -> object store bytes."""
        if self.line_endings == "crlf" and b"\0" not in data:
            return convert_crlf_to_lf(data)
        return data

    def smudge(self, data: bytes) -> bytes:
        """Object store bytes -> working copy bytes."""
        if self.line_endings == "crlf" and b"\0" not in data:
            return convert_lf_to_crlf(data)
        return data


class TreeBuilder:
    """Build trees for both sides of a sync in one object store.

    Args:
        store: Object store receiving new blobs and trees.
        mirror_filter: When set, both workspace and history trees are
            pruned to the mirrored subset.
        content_filter: Line-ending transform for workspace content.
        executable_extensions: File suffixes stored with the executable
            mode when read from the working copy.
    """

    def __init__(
        self,
        store: BaseObjectStore,
        mirror_filter: MirrorFilter | None = None,
        content_filter: ContentFilter | None = None,
        executable_extensions: Sequence[str] = (".sh",),
    ) -> None:
        self.store = store
        self.mirror_filter = mirror_filter
        self.content_filter = content_filter or ContentFilter()
        self.executable_extensions = tuple(
            ext.lower() for ext in executable_extensions
        )

    def file_mode(self, path: str) -> int:
        if path.lower().endswith(self.executable_extensions):
            return EXECUTABLE_MODE
        return REGULAR_MODE

    def from_workspace(self, workspace: Workspace, path: str = "") -> str:
        """Hash the working copy under *path* into a tree; returns its id."""
        listing = workspace.list_items(path)
        if listing is None:
            logger.warning(
                "Workspace has no authoritative listing; walking %s on disk "
                "(files created concurrently may be picked up)",
                workspace.local_root,
            )
            base = workspace.local_path(path) if path else workspace.local_root
            prefix = f"{path}/" if path else ""
            listing = [prefix + rel for rel in walk_files(base)]

        if path:
            listing = [p[len(path) + 1 :] for p in listing if p.startswith(path + "/")]
        if self.mirror_filter is not None:
            listing = self.mirror_filter.select_files(listing)

        entries = []
        for relative in sorted(listing):
            full = workspace.local_path(f"{path}/{relative}" if path else relative)
            blob = Blob.from_string(self.content_filter.clean(full.read_bytes()))
            self.store.add_object(blob)
            entries.append(
                (relative.encode("utf-8"), blob.id, self.file_mode(relative))
            )

        tree_id = from_object_id(commit_tree(self.store, entries))
        logger.debug(
            "Built workspace tree %s from %d files", tree_id[:8], len(entries)
        )
        return tree_id

    def from_history(self, tree_id: str) -> str:
        """Return the tree to mirror for a commit tree id."""
        if self.mirror_filter is None:
            return tree_id
        return self.mirror_filter.rewrite_tree(self.store, tree_id)


def diff_trees(
    store: BaseObjectStore, old_tree: str | None, new_tree: str | None
) -> list[ChangeEntry]:
    """Compare two trees with rename detection.

    Copies become additions; submodule entries are ignored.
    """
    old_id = to_object_id(old_tree) if old_tree else None
    new_id = to_object_id(new_tree) if new_tree else None
    entries: list[ChangeEntry] = []

    for change in tree_changes(
        store, old_id, new_id, rename_detector=RenameDetector(store)
    ):
        old, new = change.old, change.new
        old_path = old.path.decode("utf-8") if old and old.path else None
        new_path = new.path.decode("utf-8") if new and new.path else None
        old_sha = from_object_id(old.sha) if old and old.sha else None
        new_sha = from_object_id(new.sha) if new and new.sha else None
        old_mode = old.mode if old and old.mode else None
        new_mode = new.mode if new and new.mode else None

        if (old_mode and S_ISGITLINK(old_mode)) or (new_mode and S_ISGITLINK(new_mode)):
            logger.debug("Ignoring submodule change %s", new_path or old_path)
            continue
        if (old_mode and stat.S_ISDIR(old_mode)) or (new_mode and stat.S_ISDIR(new_mode)):
            continue

        if change.type == CHANGE_ADD or change.type == CHANGE_COPY:
            entries.append(
                ChangeEntry(
                    kind=ChangeKind.ADDED,
                    new_path=new_path,
                    new_hash=new_sha,
                    new_mode=new_mode,
                )
            )
        elif change.type == CHANGE_DELETE:
            entries.append(
                ChangeEntry(
                    kind=ChangeKind.DELETED,
                    old_path=old_path,
                    old_hash=old_sha,
                    old_mode=old_mode,
                )
            )
        elif change.type == CHANGE_RENAME:
            entries.append(
                ChangeEntry(
                    kind=ChangeKind.RENAMED,
                    old_path=old_path,
                    new_path=new_path,
                    old_hash=old_sha,
                    new_hash=new_sha,
                    old_mode=old_mode,
                    new_mode=new_mode,
                )
            )
        elif change.type == CHANGE_MODIFY:
            entries.append(
                ChangeEntry(
                    kind=ChangeKind.MODIFIED,
                    old_path=old_path,
                    new_path=new_path,
                    old_hash=old_sha,
                    new_hash=new_sha,
                    old_mode=old_mode,
                    new_mode=new_mode,
                )
            )
    return entries
