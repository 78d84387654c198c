"""Tests for shelving a single commit."""

from __future__ import annotations

import pytest

from conftest import make_commit
from vcs_mirror.core.workspace import LockLevel, PendingChangeType, SyncStatus
from vcs_mirror.errors import WorkspaceSyncError
from vcs_mirror.mirror.shelve import shelve_commit
from vcs_mirror.mirror.tree import TreeBuilder

BASE = {"a.txt": b"a", "b.txt": b"b"}


@pytest.fixture
def synced(workspace):
    workspace.server_commit(BASE, "seed")
    workspace.sync_to_latest()
    return workspace


def test_shelves_and_reverts(repository, synced, host):
    sha = make_commit(repository, {"a.txt": b"changed", "c.txt": b"c"}, message="Rework a")

    name = shelve_commit(
        repository, synced, TreeBuilder(repository.object_store), host, sha
    )

    assert name == f"shelve-commit-{sha}"
    comment, changes = synced.shelves[name]
    assert comment == f"shelve of Git commit {sha}\nRework a"
    assert {(c.path, c.change_type) for c in changes} == {
        ("a.txt", PendingChangeType.EDIT),
        ("b.txt", PendingChangeType.DELETE),
        ("c.txt", PendingChangeType.ADD),
    }
    assert synced.disk_state() == BASE
    assert synced.pending == []
    assert synced.lock_calls == [("", LockLevel.CHECKIN), ("", LockLevel.NONE)]


def test_resolves_refs(repository, synced, host):
    sha = make_commit(repository, {"a.txt": b"x", "b.txt": b"b"})
    repository.set_ref("refs/heads/topic", sha)
    name = shelve_commit(
        repository, synced, TreeBuilder(repository.object_store), host, "refs/heads/topic"
    )
    assert name == f"shelve-commit-{sha}"


def test_matching_commit_shelves_nothing(repository, synced, host):
    sha = make_commit(repository, BASE)
    assert shelve_commit(repository, synced, TreeBuilder(repository.object_store), host, sha) is None
    assert synced.shelves == {}


def test_sync_failure_raises_and_unlocks(repository, synced, host):
    synced.sync_status = SyncStatus(failures=["a.txt"])
    sha = make_commit(repository, {"a.txt": b"x"})
    with pytest.raises(WorkspaceSyncError):
        shelve_commit(repository, synced, TreeBuilder(repository.object_store), host, sha)
    assert synced.lock_calls[-1] == ("", LockLevel.NONE)
