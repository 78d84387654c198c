"""Tests for marker-file based mirror selection."""

from __future__ import annotations

import pytest
from dulwich.object_store import iter_tree_contents
from dulwich.objects import Tree

from conftest import make_tree
from vcs_mirror.errors import MirrorFilterError
from vcs_mirror.mirror.filter import MirrorFilter


def _paths(repository, tree_id: str) -> set[str]:
    return {
        entry.path.decode("utf-8")
        for entry in iter_tree_contents(repository.object_store, tree_id.encode("ascii"))
    }


class TestDirectoryPredicates:
    def test_full_marker(self):
        f = MirrorFilter()
        assert f.should_mirror_full([".gitmirrorall", "a.txt"])
        assert not f.should_mirror_partial([".gitmirrorall", "a.txt"])
        assert not f.should_exclude([".gitmirrorall"])

    def test_partial_marker(self):
        f = MirrorFilter()
        assert f.should_mirror_partial([".gitmirror"])
        assert not f.should_mirror_full([".gitmirror"])

    def test_no_marker_is_excluded(self):
        assert MirrorFilter().should_exclude(["a.txt", "b.txt"])

    def test_markers_match_case_insensitively(self):
        f = MirrorFilter()
        assert f.should_mirror_full([".GitMirrorAll"])
        assert f.should_mirror_partial([".GITMIRROR"])

    def test_custom_marker_names(self):
        f = MirrorFilter(partial_marker=".mirror", full_marker=".mirror-all")
        assert f.should_mirror_partial([".mirror"])
        assert f.should_exclude([".gitmirror"])

    def test_directory_named_like_marker_does_not_count(self, repository):
        store = repository.object_store
        inner = Tree()
        store.add_object(inner)
        tree = Tree()
        tree.add(b".gitmirror", 0o040000, inner.id)
        assert MirrorFilter().should_exclude(tree)


class TestRewriteTree:
    def test_partial_mirrors_only_its_own_files(self, repository):
        tree = make_tree(
            repository.repo,
            {
                ".gitmirror": b"",
                "top.txt": b"top",
                "sub/inner.txt": b"inner",
            },
        )
        result = MirrorFilter().rewrite_tree(repository.object_store, tree)
        assert _paths(repository, result) == {".gitmirror", "top.txt"}

    def test_partial_subdirectory_evaluated_on_its_own(self, repository):
        tree = make_tree(
            repository.repo,
            {
                ".gitmirror": b"",
                "sub/.gitmirror": b"",
                "sub/inner.txt": b"inner",
                "sub/deeper/hidden.txt": b"no",
            },
        )
        result = MirrorFilter().rewrite_tree(repository.object_store, tree)
        assert _paths(repository, result) == {
            ".gitmirror",
            "sub/.gitmirror",
            "sub/inner.txt",
        }

    def test_full_marker_is_inherited(self, repository):
        tree = make_tree(
            repository.repo,
            {
                ".gitmirrorall": b"",
                "a/b/c/deep.txt": b"deep",
                "a/x.txt": b"x",
            },
        )
        result = MirrorFilter().rewrite_tree(repository.object_store, tree)
        assert _paths(repository, result) == {
            ".gitmirrorall",
            "a/b/c/deep.txt",
            "a/x.txt",
        }

    def test_unmarked_root_raises(self, repository):
        tree = make_tree(repository.repo, {"a.txt": b"a"})
        with pytest.raises(MirrorFilterError):
            MirrorFilter().rewrite_tree(repository.object_store, tree)

    def test_empty_subtrees_are_dropped(self, repository):
        tree = make_tree(
            repository.repo,
            {".gitmirror": b"", "keep.txt": b"k", "unmarked/a.txt": b"a"},
        )
        result = MirrorFilter().rewrite_tree(repository.object_store, tree)
        root = repository.object_store[result.encode("ascii")]
        assert b"unmarked" not in [entry.path for entry in root.iteritems()]

    def test_fully_mirrored_tree_is_unchanged(self, repository):
        tree = make_tree(repository.repo, {".gitmirrorall": b"", "d/a.txt": b"a"})
        assert MirrorFilter().rewrite_tree(repository.object_store, tree) == tree


class TestSelectFiles:
    def test_matches_tree_rules(self):
        listing = [
            ".gitmirror",
            "top.txt",
            "sub/inner.txt",
            "full/.gitmirrorall",
            "full/a/b.txt",
            "partial/.gitmirror",
            "partial/p.txt",
            "partial/unmarked/u.txt",
        ]
        assert MirrorFilter().select_files(listing) == [
            ".gitmirror",
            "top.txt",
            "full/.gitmirrorall",
            "full/a/b.txt",
            "partial/.gitmirror",
            "partial/p.txt",
        ]

    def test_unmarked_intermediate_directory_excludes_subtree(self):
        listing = [".gitmirror", "a/b/.gitmirror", "a/b/file.txt"]
        assert MirrorFilter().select_files(listing) == [".gitmirror"]

    def test_unmarked_root_raises(self):
        with pytest.raises(MirrorFilterError):
            MirrorFilter().select_files(["a.txt"])
