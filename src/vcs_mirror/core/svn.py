"""Subversion working copy adapter.

Implements ``Workspace`` on top of the ``svn`` command line client.  Every
call runs non-interactively; structured output (status, log, info) is
requested with ``--xml`` and parsed with ElementTree.

Server paths are repository-relative (``/trunk/project``), which is also
the form ``svn log -v`` reports changed paths in.  URLs are built from
``repository_url`` + server path.

Svn has no native shelvesets: ``shelve`` writes ``svn diff --git`` output
to ``<shelf_dir>/<name>.patch``.  Locks are file-level, so locking a
directory locks its ``lock_file`` (the mirror marker by default).
"""

from __future__ import annotations

import logging
import posixpath
import re
import subprocess
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from xml.etree import ElementTree

from vcs_mirror.core.workspace import (
    ChangedItem,
    Changeset,
    LockLevel,
    PendingChange,
    PendingChangeType,
    SyncStatus,
    Workspace,
)
from vcs_mirror.errors import CheckinConflictError, CheckinError, MirrorError
from vcs_mirror.file_handler import write_file_atomic

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600

# svn update prints four status columns, a space and the path.
_UPDATE_LINE = re.compile(r"^([ADUCGER ])([UCG ])([B ])([C ]) (\S.*)$")
_COMMITTED = re.compile(r"Committed revision (\d+)\.")
_REVERTED = re.compile(r"^Reverted '(.+)'$")
_QUOTED_PATH = re.compile(r"'([^']+)'")

# Error codes svn reports when a commit raced with another one.
_OUT_OF_DATE_CODES = ("E155011", "E160028", "E160024", "E170004", "E155015")
# Error codes meaning "no such path at that revision".
_NOT_FOUND_CODES = ("W170000", "W160013", "E200009", "E160013")

_SVN_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class SvnCommandError(MirrorError):
    """An ``svn`` invocation exited with a non-zero status."""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


def parse_svn_date(text: str | None) -> datetime | None:
    if not text:
        return None
    return datetime.strptime(text, _SVN_DATE_FORMAT).replace(tzinfo=timezone.utc)


class SvnWorkspace(Workspace):
    """A checked-out svn working copy.

    Args:
        local_root: Working copy directory (already checked out).
        server_root: Repository-relative path it is mapped to, e.g. ``/trunk``.
        repository_url: Root URL of the repository.
        svn_binary: ``svn`` executable to run.
        username: Optional username passed with ``--username``.
        password: Optional password passed with ``--password``.
        shelf_dir: Where shelved patches are written.
        lock_file: File locked on behalf of a directory.
        timeout: Seconds before an ``svn`` call is abandoned.
    """

    def __init__(
        self,
        local_root: str | Path,
        server_root: str,
        repository_url: str = "",
        svn_binary: str = "svn",
        username: str | None = None,
        password: str | None = None,
        shelf_dir: str | Path | None = None,
        lock_file: str = ".gitmirror",
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(Path(local_root), "/" + server_root.strip("/"))
        self.repository_url = repository_url.rstrip("/")
        self.svn_binary = svn_binary
        self.username = username
        self.password = password
        self.shelf_dir = (
            Path(shelf_dir)
            if shelf_dir
            else self.local_root.parent / f"{self.local_root.name}.shelves"
        )
        self.lock_file = lock_file
        self.timeout = timeout
        self._locked: set[str] = set()

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def url(self, server_path: str) -> str:
        return self.repository_url + server_path

    def _command(self, args: Sequence[str]) -> list[str]:
        cmd = [self.svn_binary, *args, "--non-interactive"]
        if self.username:
            cmd += ["--username", self.username]
        if self.password:
            cmd += ["--password", self.password, "--no-auth-cache"]
        return cmd

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = self._command(args)
        logger.debug("Running svn %s", " ".join(args))
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.local_root),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise SvnCommandError(
                f"svn {args[0]} timed out after {self.timeout}s"
            ) from exc
        except OSError as exc:
            raise SvnCommandError(f"Cannot run {self.svn_binary}: {exc}") from exc
        if check and result.returncode != 0:
            raise SvnCommandError(
                f"svn {args[0]} failed: {result.stderr.strip()}", result.stderr
            )
        return result

    def _run_xml(self, *args: str) -> ElementTree.Element:
        result = self._run(*args, "--xml")
        return ElementTree.fromstring(result.stdout)

    def _relative(self, reported: str) -> str:
        """Normalize a path printed by svn (relative to cwd) to POSIX form."""
        path = Path(reported)
        if path.is_absolute():
            path = path.relative_to(self.local_root)
        rel = path.as_posix()
        return "" if rel == "." else rel

    # ------------------------------------------------------------------
    # Working copy state
    # ------------------------------------------------------------------

    def _status_entries(self, verbose: bool = False):
        args = ["status", "-v"] if verbose else ["status"]
        root = self._run_xml(*args)
        for entry in root.iter("entry"):
            wc_status = entry.find("wc-status")
            if wc_status is None:
                continue
            yield self._relative(entry.get("path", "")), wc_status

    def get_pending_changes(self) -> list[PendingChange]:
        changes: list[PendingChange] = []
        for path, wc_status in self._status_entries():
            item = wc_status.get("item", "normal")
            match item:
                case "added" | "replaced" if wc_status.get("moved-from"):
                    changes.append(
                        PendingChange(
                            path=path,
                            change_type=PendingChangeType.RENAME,
                            source_path=self._relative(wc_status.get("moved-from")),
                        )
                    )
                case "added":
                    changes.append(PendingChange(path=path, change_type=PendingChangeType.ADD))
                case "deleted" | "missing":
                    # The delete half of a move is reported through its target.
                    if not wc_status.get("moved-to"):
                        changes.append(
                            PendingChange(path=path, change_type=PendingChangeType.DELETE)
                        )
                case "modified" | "replaced" | "conflicted":
                    changes.append(PendingChange(path=path, change_type=PendingChangeType.EDIT))
                case "normal" if wc_status.get("props") in ("modified", "conflicted"):
                    changes.append(PendingChange(path=path, change_type=PendingChangeType.EDIT))
                case "normal" if wc_status.find("lock") is not None:
                    changes.append(PendingChange(path=path, change_type=PendingChangeType.LOCK))
                case _:
                    continue
        return changes

    def _update(self, revision: str) -> SyncStatus:
        result = self._run(
            "update", "-r", revision, "--accept", "postpone", check=False
        )
        warnings = [
            line.strip()
            for line in result.stderr.splitlines()
            if line.startswith("svn: warning:")
        ]
        if result.returncode != 0:
            return SyncStatus(
                no_action_needed=False,
                failures=[result.stderr.strip() or f"svn update exited {result.returncode}"],
                warnings=warnings,
            )

        conflicts: list[str] = []
        touched = 0
        for line in result.stdout.splitlines():
            if line.startswith("Skipped"):
                warnings.append(line.strip())
                continue
            match = _UPDATE_LINE.match(line)
            if match is None:
                continue
            touched += 1
            if "C" in match.group(1, 2, 4):
                conflicts.append(self._relative(match.group(5)))
        return SyncStatus(
            no_action_needed=touched == 0,
            conflicts=conflicts,
            warnings=warnings,
        )

    def sync_to_latest(self) -> SyncStatus:
        return self._update("HEAD")

    def sync_to(self, changeset_id: int) -> SyncStatus:
        return self._update(str(changeset_id))

    def list_items(self, path: str = "") -> list[str] | None:
        prefix = path.strip("/")
        files: list[str] = []
        for rel, wc_status in self._status_entries(verbose=True):
            if wc_status.get("item") in ("unversioned", "ignored", "external", "deleted", "missing"):
                continue
            if prefix and not (rel == prefix or rel.startswith(prefix + "/")):
                continue
            if self.local_path(rel).is_file():
                files.append(rel)
        return sorted(files)

    # ------------------------------------------------------------------
    # Pending changes
    # ------------------------------------------------------------------

    def pend_add(self, path: str) -> None:
        self._run("add", "--parents", path)

    def pend_delete(self, path: str) -> None:
        self._run("delete", "--force", path)

    def pend_rename(self, old_path: str, new_path: str) -> None:
        self._run("move", "--parents", old_path, new_path)

    def pend_edit(self, path: str) -> None:
        # svn detects content edits itself.
        logger.debug("Edit %s", path)

    def _targets(self, changes: Sequence[PendingChange]) -> list[str]:
        targets: list[str] = []
        for change in changes:
            targets.append(change.path or ".")
            if change.source_path:
                targets.append(change.source_path)
        return targets

    def checkin(self, changes: Sequence[PendingChange], comment: str) -> int:
        if not changes:
            raise CheckinError("Nothing to check in")
        result = self._run(
            "commit",
            "--depth",
            "empty",
            "--no-unlock",
            "-m",
            comment,
            *self._targets(changes),
            check=False,
        )
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if any(code in stderr for code in _OUT_OF_DATE_CODES):
                raise CheckinConflictError(
                    f"Checkin rejected: {stderr}", _QUOTED_PATH.findall(stderr)
                )
            raise CheckinError(f"Checkin failed: {stderr}")
        match = _COMMITTED.search(result.stdout)
        if match is None:
            raise CheckinError("svn commit did not report a new revision")
        revision = int(match.group(1))
        logger.info("Committed revision %d", revision)
        return revision

    def shelve(
        self, name: str, comment: str, changes: Sequence[PendingChange]
    ) -> None:
        result = self._run("diff", "--git", *self._targets(changes))
        header = "".join(f"# {line}\n" for line in comment.splitlines())
        target = self.shelf_dir / f"{name}.patch"
        target.parent.mkdir(parents=True, exist_ok=True)
        write_file_atomic(target, (header + result.stdout).encode("utf-8"))
        logger.info("Shelved %d change(s) to %s", len(changes), target)

    def undo(self, changes: Sequence[PendingChange]) -> int:
        if not changes:
            return 0
        result = self._run("revert", "--depth", "infinity", *self._targets(changes))
        reverted = set()
        for line in result.stdout.splitlines():
            match = _REVERTED.match(line.strip())
            if match:
                reverted.add(self._relative(match.group(1)))

        # Reverted additions stay on disk as unversioned files.
        leftovers = [
            change.path
            for change in changes
            if change.change_type in (PendingChangeType.ADD, PendingChangeType.RENAME)
        ]
        for rel in sorted(leftovers, key=lambda p: p.count("/"), reverse=True):
            local = self.local_path(rel)
            if local.is_file():
                local.unlink()
            elif local.is_dir() and not any(local.iterdir()):
                local.rmdir()

        return sum(1 for change in changes if (change.path or "") in reverted)

    def set_lock(self, path: str, level: LockLevel) -> None:
        target = path
        if self.local_path(path).is_dir():
            target = posixpath.join(path, self.lock_file) if path else self.lock_file
            if not self.local_path(target).is_file():
                logger.warning(
                    "No %s in %s; lock is not enforced", self.lock_file, self.server_path(path)
                )
                return

        if level is LockLevel.NONE:
            if target in self._locked:
                self._run("unlock", target)
                self._locked.discard(target)
            return
        if target in self._locked:
            return
        self._run("lock", "-m", "vcs-mirror sync in progress", target)
        self._locked.add(target)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def latest_changeset_id(self) -> int:
        root = self._run_xml("info", self.url(self.server_root) + "@HEAD")
        commit = root.find("./entry/commit")
        if commit is None:
            raise SvnCommandError(f"No commit information for {self.server_root}")
        return int(commit.get("revision"))

    def query_history(
        self,
        path: str = "",
        max_results: int | None = None,
        version_end: int | None = None,
        include_changes: bool = False,
    ) -> list[Changeset]:
        end = str(version_end) if version_end is not None else "HEAD"
        args = ["log", "-r", f"{end}:1"]
        if max_results is not None:
            args += ["-l", str(max_results)]
        if include_changes:
            args.append("-v")
        args.append(f"{self.url(self.server_path(path))}@{end}")

        history: list[Changeset] = []
        for entry in self._run_xml(*args).iter("logentry"):
            changes = tuple(
                ChangedItem(
                    server_path=item.text or "",
                    item_type=item.get("kind", "file"),
                    action=item.get("action", ""),
                )
                for item in entry.findall("./paths/path")
            )
            history.append(
                Changeset(
                    changeset_id=int(entry.get("revision")),
                    comment=entry.findtext("msg") or "",
                    owner=entry.findtext("author") or "",
                    created_at=parse_svn_date(entry.findtext("date")),
                    changes=changes,
                )
            )
        return history

    def item_exists(self, server_path: str, changeset_id: int) -> bool:
        result = self._run(
            "info", "--xml", f"{self.url(server_path)}@{changeset_id}", check=False
        )
        if result.returncode != 0:
            if any(code in result.stderr for code in _NOT_FOUND_CODES):
                return False
            raise SvnCommandError(
                f"svn info failed: {result.stderr.strip()}", result.stderr
            )
        entry = ElementTree.fromstring(result.stdout).find("entry")
        return entry is not None and entry.get("kind") == "file"
