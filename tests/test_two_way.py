"""Tests for the bidirectional mirror."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from conftest import RecordingHost, make_commit
from vcs_mirror.config_schema import MirrorPolicyConfig
from vcs_mirror.core.workspace import LockLevel, PendingChangeType, SyncStatus
from vcs_mirror.mirror.models import CycleOutcome
from vcs_mirror.mirror.two_way import TwoWayMirror

ONBOARD = {".gitmirrorall": b"", "a.txt": b"a"}


@pytest.fixture
def onboarded(repository, workspace):
    a = make_commit(repository, ONBOARD, message="Import\n\n[svn-changeset: 1]")
    workspace.server_commit(ONBOARD, f"Onboard [git-commit-sha: {a} is-initial-commit]")
    repository.set_ref("refs/remotes/origin/master", a)
    return a


def make_two_way(repository, workspace, host=None, sleep=None, **policy) -> TwoWayMirror:
    repository.fetch_latest = MagicMock()
    return TwoWayMirror(
        repository,
        workspace,
        MirrorPolicyConfig(**policy),
        host or RecordingHost(),
        user_map={"alice": "Alice <alice@example.com>"},
        sleep=sleep or MagicMock(),
    )


class TestRunIteration:
    def test_up_to_date(self, repository, workspace, onboarded):
        mirror = make_two_way(repository, workspace)

        result = mirror.run_iteration()

        assert result.outcome is CycleOutcome.NO_CHANGES
        assert workspace.checkin_comments == []
        assert workspace.lock_calls[-1] == ("", LockLevel.NONE)

    def test_new_source_commit_is_checked_in(self, repository, workspace, onboarded):
        b = make_commit(repository, {**ONBOARD, "b.txt": b"b"}, [onboarded], message="B")
        repository.set_ref("refs/remotes/origin/master", b)

        result = make_two_way(repository, workspace).run_iteration()

        assert result.outcome is CycleOutcome.COMMITTED
        assert result.changesets == [2]
        (comment,) = workspace.checkin_comments
        assert f"From: {onboarded}" in comment
        assert f"[git-commit-sha: {b}]" in comment
        assert workspace.disk_state()["b.txt"] == b"b"

    def test_forward_pass_waits_for_pending_branch_merge(
        self, repository, workspace, onboarded
    ):
        workspace.server_commit({"a.txt": b"edit"}, "Fix typo", owner="alice")
        host = RecordingHost()
        mirror = make_two_way(repository, workspace, host=host)

        result = mirror.run_iteration()

        assert result.outcome is CycleOutcome.NO_CHANGES
        tip = repository.resolve_ref("refs/heads/from-svn")
        assert repository.get_commit(tip).author == "Alice <alice@example.com>"
        assert workspace.checkin_comments == []
        assert workspace.lock_calls == []
        assert any("missing from the source branch" in text for _, text in host.messages)

    def test_merged_pending_branch_unblocks_forward_pass(
        self, repository, workspace, onboarded
    ):
        workspace.server_commit({"a.txt": b"edit"}, "Fix typo", owner="alice")
        mirror = make_two_way(repository, workspace)
        mirror.run_iteration()
        tip = repository.resolve_ref("refs/heads/from-svn")
        follow_up = make_commit(
            repository,
            {**ONBOARD, "a.txt": b"edit", "c.txt": b"c"},
            [tip],
            message="C",
        )
        repository.set_ref("refs/remotes/origin/master", follow_up)

        result = mirror.run_iteration()

        assert result.outcome is CycleOutcome.COMMITTED
        (comment,) = workspace.checkin_comments
        assert f"From: {onboarded}" in comment
        assert f"To: {follow_up}" in comment

    def test_sync_warnings_fail_the_iteration(self, repository, workspace, onboarded):
        b = make_commit(repository, {**ONBOARD, "b.txt": b"b"}, [onboarded], message="B")
        repository.set_ref("refs/remotes/origin/master", b)
        workspace.sync_status = SyncStatus(warnings=["skipped a.txt"])
        host = RecordingHost()

        result = make_two_way(repository, workspace, host=host).run_iteration()

        assert result.outcome is CycleOutcome.FAILED
        assert "Syncing working copy to 1 failed" in host.errors[0]
        assert workspace.lock_calls[-1] == ("", LockLevel.NONE)

    def test_no_submit_shelves(self, repository, workspace, onboarded):
        b = make_commit(repository, {**ONBOARD, "b.txt": b"b"}, [onboarded], message="B")
        repository.set_ref("refs/remotes/origin/master", b)

        result = make_two_way(repository, workspace, submit=False).run_iteration()

        assert result.outcome is CycleOutcome.SHELVED
        _, shelved = workspace.shelves[f"ported-git-changes-{b}"]
        assert "b.txt" in [c.path for c in shelved]
        assert all(c.change_type is not PendingChangeType.LOCK for c in shelved)
        assert workspace.checkin_comments == []


class TestRun:
    def test_sleeps_between_iterations(self, repository, workspace, onboarded):
        sleep = MagicMock()
        mirror = make_two_way(repository, workspace, sleep=sleep, two_way_poll_interval=30)
        assert mirror.run(max_iterations=2) == 0
        sleep.assert_called_once_with(30)

    def test_failure_stops_the_loop(self, repository, workspace):
        # no history at all: the reverse pass cannot find a base
        repository.set_ref(
            "refs/remotes/origin/master", make_commit(repository, ONBOARD, message="x")
        )
        sleep = MagicMock()
        assert make_two_way(repository, workspace, sleep=sleep).run() == 1
        sleep.assert_not_called()
