"""Tests for the dulwich-backed source repository wrapper."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from dulwich.repo import Repo

from conftest import make_commit, make_tree
from vcs_mirror.core.git import GitRepository, is_object_id, transport_hint
from vcs_mirror.errors import FetchError, PreconditionError


class TestHelpers:
    def test_is_object_id(self):
        assert is_object_id("a" * 40)
        assert is_object_id("b" * 64)
        assert not is_object_id("A" * 40)
        assert not is_object_id("refs/heads/master")

    @pytest.mark.parametrize(
        "url", ["git@github.com:org/repo.git", "ssh://git@example.com/repo.git"]
    )
    def test_ssh_hint(self, url):
        assert "ssh" in transport_hint(url)

    def test_no_hint_for_https(self):
        assert transport_hint("https://example.com/repo.git") is None
        assert transport_hint(None) is None


class TestCommits:
    def test_create_and_read(self, repository):
        tree = make_tree(repository.repo, {"a.txt": b"a"})
        sha = repository.create_commit(
            tree, [], "Message\n", "Dev <dev@example.com>", author_time=1700000000
        )

        commit = repository.get_commit(sha)

        assert commit.sha == sha
        assert commit.tree == tree
        assert commit.parents == ()
        assert commit.message == "Message\n"
        assert commit.author == "Dev <dev@example.com>"
        assert commit.timestamp == 1700000000

    def test_unknown_commit(self, repository):
        with pytest.raises(PreconditionError, match="Unknown commit"):
            repository.get_commit("f" * 40)

    def test_blob_is_not_a_commit(self, repository):
        blob = repository.add_blob(b"data")
        with pytest.raises(PreconditionError, match="not a commit"):
            repository.get_commit(blob)

    def test_blob_roundtrip(self, repository):
        assert repository.read_blob(repository.add_blob(b"payload")) == b"payload"


class TestRefs:
    def test_resolve_and_set(self, repository):
        sha = make_commit(repository, {"a.txt": b"a"})
        repository.set_ref("refs/remotes/origin/master", sha)
        assert repository.resolve_ref("refs/remotes/origin/master") == sha
        assert repository.resolve_ref(sha) == sha

    def test_unknown_ref(self, repository):
        with pytest.raises(PreconditionError, match="Unknown ref"):
            repository.resolve_ref("refs/heads/missing")


class TestWalkParents:
    def test_breadth_first_each_commit_once(self, repository):
        root = make_commit(repository, {"a.txt": b"0"}, message="root")
        left = make_commit(repository, {"a.txt": b"l"}, [root], message="left")
        right = make_commit(repository, {"a.txt": b"r"}, [root], message="right")
        merge = make_commit(repository, {"a.txt": b"m"}, [left, right], message="merge")

        walked = [c.sha for c in repository.walk_parents(merge)]

        assert walked == [merge, left, right, root]


class TestFetch:
    def test_remote_url_and_fetch_error(self, tmp_path):
        repo = Repo.init(str(tmp_path / "src"), mkdir=True)
        config = repo.get_config()
        config.set((b"remote", b"origin"), b"url", b"git@example.invalid:org/repo.git")
        config.write_to_path()
        repository = GitRepository(repo)

        assert repository.remote_url() == "git@example.invalid:org/repo.git"
        assert repository.remote_url("upstream") is None

        with patch(
            "vcs_mirror.core.git.porcelain.fetch", side_effect=OSError("connection refused")
        ):
            with pytest.raises(FetchError) as excinfo:
                repository.fetch_latest()

        assert "connection refused" in str(excinfo.value)
        assert excinfo.value.hint is not None
        assert "ssh transport" in str(excinfo.value)

    def test_open_rejects_non_repository(self, tmp_path):
        with pytest.raises(ValueError, match="Not a git repository"):
            GitRepository.open(tmp_path)
