"""Shared pytest fixtures for vcs-mirror tests."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest
from dotenv import load_dotenv
from dulwich.index import commit_tree
from dulwich.objects import Blob
from dulwich.repo import MemoryRepo

from vcs_mirror.core.git import GitRepository
from vcs_mirror.core.workspace import (
    ChangedItem,
    Changeset,
    LockLevel,
    PendingChange,
    PendingChangeType,
    SyncStatus,
    Workspace,
)
from vcs_mirror.errors import CheckinError
from vcs_mirror.file_handler import walk_files

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a real svn binary",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a real svn binary"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fake destination working copy
# ---------------------------------------------------------------------------


class FakeWorkspace(Workspace):
    """In-process working copy over a temp directory.

    Server state is a series of snapshots (changeset id -> {path: bytes});
    the local directory is the working copy.  History is newest first.

    Like svn, a held lock shows up as a ``LOCK`` pending change on the
    lock file.  Checking in only lock entries creates no revision and
    undo does not count them.
    """

    lock_file = ".gitmirror"

    def __init__(self, root: Path, server_root: str = "/trunk") -> None:
        root.mkdir(parents=True, exist_ok=True)
        super().__init__(root, server_root)
        self.snapshots: dict[int, dict[str, bytes]] = {}
        self.history: list[Changeset] = []
        self.versioned: set[str] = set()
        self.pending: list[PendingChange] = []
        self.current = 0
        self.shelves: dict[str, tuple[str, list[PendingChange]]] = {}
        self.lock_calls: list[tuple[str, LockLevel]] = []
        self.locked: set[str] = set()
        self.checkin_comments: list[str] = []
        self.checkin_error: Exception | None = None
        self.sync_status: SyncStatus | None = None
        self.undo_shortfall = 0
        self.history_queries = 0
        self.sync_calls = 0

    # -- helpers -----------------------------------------------------------

    @property
    def latest(self) -> int:
        return max(self.snapshots) if self.snapshots else 0

    def server_commit(
        self,
        files: dict[str, bytes | None],
        comment: str,
        owner: str = "someone",
    ) -> int:
        """Record a changeset made by another client (disk is not touched)."""
        state = dict(self.snapshots.get(self.latest, {}))
        items = []
        for path, data in files.items():
            if data is None:
                state.pop(path, None)
                action = "D"
            else:
                action = "M" if path in state else "A"
                state[path] = data
            items.append(ChangedItem(server_path=self.server_path(path), action=action))
        return self._record(state, comment, owner, items)

    def _record(
        self, state: dict[str, bytes], comment: str, owner: str, items: list[ChangedItem]
    ) -> int:
        changeset_id = self.latest + 1
        self.snapshots[changeset_id] = state
        self.history.insert(
            0,
            Changeset(
                changeset_id=changeset_id,
                comment=comment,
                owner=owner,
                changes=tuple(items),
            ),
        )
        return changeset_id

    def _restore(self, changeset_id: int) -> None:
        state = self.snapshots.get(changeset_id, {})
        for rel in walk_files(self.local_root):
            if rel not in state:
                self.local_path(rel).unlink()
        for rel, data in state.items():
            target = self.local_path(rel)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        self.versioned = set(state)
        self.current = changeset_id

    def disk_state(self) -> dict[str, bytes]:
        return {rel: self.local_path(rel).read_bytes() for rel in walk_files(self.local_root)}

    # -- Workspace ---------------------------------------------------------

    def get_pending_changes(self) -> list[PendingChange]:
        locks = [
            PendingChange(path=path, change_type=PendingChangeType.LOCK)
            for path in sorted(self.locked)
        ]
        return locks + list(self.pending)

    def sync_to_latest(self) -> SyncStatus:
        return self.sync_to(self.latest)

    def sync_to(self, changeset_id: int) -> SyncStatus:
        self.sync_calls += 1
        if self.sync_status is not None:
            return self.sync_status
        if changeset_id == self.current:
            return SyncStatus()
        self._restore(changeset_id)
        return SyncStatus(no_action_needed=False)

    def list_items(self, path: str = "") -> list[str] | None:
        return sorted(self.versioned)

    def pend_add(self, path: str) -> None:
        assert self.local_path(path).is_file(), path
        self.versioned.add(path)
        self.pending.append(PendingChange(path=path, change_type=PendingChangeType.ADD))

    def pend_delete(self, path: str) -> None:
        self.local_path(path).unlink()
        self.versioned.discard(path)
        self.pending.append(PendingChange(path=path, change_type=PendingChangeType.DELETE))

    def pend_rename(self, old_path: str, new_path: str) -> None:
        target = self.local_path(new_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        self.local_path(old_path).rename(target)
        self.versioned.discard(old_path)
        self.versioned.add(new_path)
        self.pending.append(
            PendingChange(
                path=new_path,
                change_type=PendingChangeType.RENAME,
                source_path=old_path,
            )
        )

    def pend_edit(self, path: str) -> None:
        if not any(change.path == path for change in self.pending):
            self.pending.append(PendingChange(path=path, change_type=PendingChangeType.EDIT))

    def checkin(self, changes: Sequence[PendingChange], comment: str) -> int:
        if self.checkin_error is not None:
            raise self.checkin_error
        if all(change.change_type is PendingChangeType.LOCK for change in changes):
            raise CheckinError("svn commit did not report a new revision")
        items = []
        for change in changes:
            items.append(ChangedItem(server_path=self.server_path(change.path)))
            if change.source_path:
                items.append(ChangedItem(server_path=self.server_path(change.source_path)))
        changeset_id = self._record(self.disk_state(), comment, "mirror", items)
        self.current = changeset_id
        self.pending = []
        self.checkin_comments.append(comment)
        return changeset_id

    def shelve(self, name: str, comment: str, changes: Sequence[PendingChange]) -> None:
        self.shelves[name] = (comment, list(changes))

    def undo(self, changes: Sequence[PendingChange]) -> int:
        self._restore(self.current)
        self.pending = []
        reverted = [c for c in changes if c.change_type is not PendingChangeType.LOCK]
        return len(reverted) - self.undo_shortfall

    def set_lock(self, path: str, level: LockLevel) -> None:
        self.lock_calls.append((path, level))
        target = f"{path}/{self.lock_file}" if path else self.lock_file
        if level is LockLevel.NONE:
            self.locked.discard(target)
        else:
            self.locked.add(target)

    def latest_changeset_id(self) -> int:
        return self.latest

    def query_history(
        self,
        path: str = "",
        max_results: int | None = None,
        version_end: int | None = None,
        include_changes: bool = False,
    ) -> list[Changeset]:
        self.history_queries += 1
        entries = [
            c for c in self.history if version_end is None or c.changeset_id <= version_end
        ]
        if max_results is not None:
            entries = entries[:max_results]
        return entries

    def item_exists(self, server_path: str, changeset_id: int) -> bool:
        rel = self.relative_path(server_path)
        return rel is not None and rel in self.snapshots.get(changeset_id, {})


class RecordingHost:
    """Host capturing every message; answers confirmations from a list."""

    def __init__(self, answers: Sequence[bool] = ()) -> None:
        self.answers = list(answers)
        self.confirmations: list[str] = []
        self.messages: list[tuple[str, str]] = []

    def confirm_checkin(self, shelveset_name: str) -> bool:
        self.confirmations.append(shelveset_name)
        return self.answers.pop(0) if self.answers else True

    def _record(self, channel: str, fmt: str, args: tuple[Any, ...]) -> None:
        self.messages.append((channel, fmt % args if args else fmt))

    def verbose(self, fmt: str, *args: Any) -> None:
        self._record("verbose", fmt, args)

    def status(self, fmt: str, *args: Any) -> None:
        self._record("status", fmt, args)

    def error(self, fmt: str, *args: Any) -> None:
        self._record("error", fmt, args)

    @property
    def errors(self) -> list[str]:
        return [text for channel, text in self.messages if channel == "error"]


# ---------------------------------------------------------------------------
# Source repository helpers
# ---------------------------------------------------------------------------


def file_mode(path: str) -> int:
    return 0o100755 if path.endswith(".sh") else 0o100644


def make_tree(repo: MemoryRepo, files: dict[str, bytes]) -> str:
    """Write *files* as blobs plus trees; returns the root tree id."""
    entries = []
    for path, data in sorted(files.items()):
        blob = Blob.from_string(data)
        repo.object_store.add_object(blob)
        entries.append((path.encode("utf-8"), blob.id, file_mode(path)))
    return commit_tree(repo.object_store, entries).decode("ascii")


def make_commit(
    repository: GitRepository,
    files: dict[str, bytes],
    parents: Sequence[str] = (),
    message: str = "change",
) -> str:
    tree = make_tree(repository.repo, files)
    return repository.create_commit(
        tree, list(parents), message, "Dev <dev@example.com>", author_time=1700000000
    )


@pytest.fixture
def repository():
    """A ``GitRepository`` over an in-memory dulwich repo."""
    return GitRepository(MemoryRepo())


@pytest.fixture
def workspace(tmp_path):
    return FakeWorkspace(tmp_path / "wc")


@pytest.fixture
def host():
    return RecordingHost()
