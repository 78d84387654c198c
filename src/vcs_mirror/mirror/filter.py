"""Marker-file based selection of the mirrored subset of a tree.

A directory is mirrored when it (or an ancestor) contains a marker file:

- the *full* marker (``.gitmirrorall`` by default) mirrors the directory
  and its entire subtree;
- the *partial* marker (``.gitmirror``) mirrors only the files directly in
  that directory, and every subdirectory is evaluated on its own.

A directory with neither marker and no full-marker ancestor is excluded
together with everything below it.  Marker names are matched
case-insensitively and their content is never read.
"""

from __future__ import annotations

import logging
import posixpath
import stat
from collections import defaultdict
from collections.abc import Iterable

from dulwich.object_store import BaseObjectStore
from dulwich.objects import S_ISGITLINK, Tree

from vcs_mirror.core.git import from_object_id, to_object_id
from vcs_mirror.errors import MirrorFilterError

logger = logging.getLogger(__name__)

DEFAULT_PARTIAL_MARKER = ".gitmirror"
DEFAULT_FULL_MARKER = ".gitmirrorall"


class MirrorFilter:
    """Decide which directories of a tree are mirrored.

    Args:
        partial_marker: File name that mirrors a single directory.
        full_marker: File name that mirrors a whole subtree.
    """

    def __init__(
        self,
        partial_marker: str = DEFAULT_PARTIAL_MARKER,
        full_marker: str = DEFAULT_FULL_MARKER,
    ) -> None:
        self.partial_marker = partial_marker
        self.full_marker = full_marker
        self._partial = partial_marker.lower()
        self._full = full_marker.lower()

    # ------------------------------------------------------------------
    # Directory predicates
    # ------------------------------------------------------------------

    @staticmethod
    def _names(directory: Tree | Iterable[str]) -> set[str]:
        if isinstance(directory, Tree):
            return {
                entry.path.decode("utf-8", errors="replace").lower()
                for entry in directory.iteritems()
                if not stat.S_ISDIR(entry.mode)
            }
        return {name.lower() for name in directory}

    def should_mirror_full(self, directory: Tree | Iterable[str]) -> bool:
        return self._full in self._names(directory)

    def should_mirror_partial(self, directory: Tree | Iterable[str]) -> bool:
        return self._partial in self._names(directory)

    def should_exclude(self, directory: Tree | Iterable[str]) -> bool:
        names = self._names(directory)
        return self._full not in names and self._partial not in names

    # ------------------------------------------------------------------
    # Tree rewriting
    # ------------------------------------------------------------------

    def rewrite_tree(self, store: BaseObjectStore, tree_id: str) -> str:
        """Return the id of a copy of *tree_id* pruned to mirrored content.

        New subtrees are written into *store*.

        Raises:
            MirrorFilterError: If the root directory carries no marker.
        """
        root = store[to_object_id(tree_id)]
        if self.should_exclude(root):
            raise MirrorFilterError(
                f"Tree {tree_id[:8]} has no {self.partial_marker} or "
                f"{self.full_marker} marker at its root"
            )
        rewritten = self._rewrite(store, root, inherited_full=False)
        # The root always carries a marker file, so it is never pruned.
        assert rewritten is not None
        store.add_object(rewritten)
        return from_object_id(rewritten.id)

    def _rewrite(
        self, store: BaseObjectStore, tree: Tree, inherited_full: bool
    ) -> Tree | None:
        full = inherited_full or self.should_mirror_full(tree)
        if not full and not self.should_mirror_partial(tree):
            return None

        result = Tree()
        for entry in tree.iteritems():
            if stat.S_ISDIR(entry.mode):
                subtree = self._rewrite(store, store[entry.sha], full)
                if subtree is None or len(subtree) == 0:
                    continue
                store.add_object(subtree)
                result.add(entry.path, entry.mode, subtree.id)
            elif S_ISGITLINK(entry.mode):
                logger.debug("Skipping submodule %s", entry.path)
            else:
                result.add(entry.path, entry.mode, entry.sha)
        return result

    # ------------------------------------------------------------------
    # Flat listings
    # ------------------------------------------------------------------

    def select_files(self, paths: Iterable[str]) -> list[str]:
        """Filter relative POSIX file paths with the same rules as trees.

        Raises:
            MirrorFilterError: If the root directory carries no marker.
        """
        paths = list(paths)
        contents: dict[str, set[str]] = defaultdict(set)
        for path in paths:
            directory, name = posixpath.split(path)
            contents[directory].add(name)

        if self.should_exclude(contents.get("", ())):
            raise MirrorFilterError(
                f"Listing has no {self.partial_marker} or "
                f"{self.full_marker} marker at its root"
            )

        verdicts: dict[str, bool] = {}
        selected = []
        for path in paths:
            directory = posixpath.dirname(path)
            if directory not in verdicts:
                verdicts[directory] = self._files_mirrored(directory, contents)
            if verdicts[directory]:
                selected.append(path)
        return selected

    def _files_mirrored(
        self, directory: str, contents: dict[str, set[str]]
    ) -> bool:
        levels = [""]
        if directory:
            parts = directory.split("/")
            levels += ["/".join(parts[: i + 1]) for i in range(len(parts))]
        for level in levels:
            names = contents.get(level, ())
            if self.should_mirror_full(names):
                return True
            if level == directory:
                return self.should_mirror_partial(names)
            if self.should_exclude(names):
                return False
        return False
