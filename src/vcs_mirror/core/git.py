"""Source history provider backed by dulwich.

Wraps a dulwich ``Repo`` so the mirror engine can fetch, resolve refs,
walk ancestry and write synthetic commits without a git binary.  All ids
crossing this boundary are hex strings; conversion to dulwich's bytes
object ids happens here.
"""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from collections.abc import Iterator, Sequence
from pathlib import Path

from dulwich import porcelain
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.object_store import BaseObjectStore
from dulwich.objects import Blob, Commit, parse_timezone
from dulwich.repo import BaseRepo, Repo
from pydantic import BaseModel

from vcs_mirror.errors import FetchError, PreconditionError

logger = logging.getLogger(__name__)

_SHA_PATTERN = re.compile(r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$")

# user@host:path (scp-like syntax) and ssh:// URLs
_SSH_URL_PATTERN = re.compile(r"^(?:ssh://|[\w.-]+@[\w.-]+:)")


def to_object_id(sha: str) -> bytes:
    """Convert a hex id string into a dulwich object id."""
    return sha.encode("ascii")


def from_object_id(oid: bytes) -> str:
    return oid.decode("ascii")


def is_object_id(value: str) -> bool:
    return bool(_SHA_PATTERN.match(value))


def transport_hint(url: str | None) -> str | None:
    """Return an actionable hint for remote URLs that commonly fail unattended."""
    if url and _SSH_URL_PATTERN.match(url):
        return (
            "remote uses the ssh transport; configure a key for the service "
            "account or switch the remote to an https:// URL"
        )
    return None


class CommitInfo(BaseModel):
    """Read-only view of a source commit.

    Attributes:
        sha: Hex commit id.
        parents: Hex ids of the parent commits, in order.
        tree: Hex id of the commit's root tree.
        message: Decoded commit message.
        author: Decoded author line (``Name <email>``).
        timestamp: Author time as a Unix timestamp.
    """

    sha: str
    parents: tuple[str, ...] = ()
    tree: str
    message: str = ""
    author: str = ""
    timestamp: int = 0

    model_config = {"frozen": True}


class GitRepository:
    """Read and write access to the source repository.

    Args:
        repo: An open dulwich repository (``Repo`` or ``MemoryRepo``).
    """

    def __init__(self, repo: BaseRepo) -> None:
        self.repo = repo

    @classmethod
    def open(cls, path: str | Path) -> GitRepository:
        """Open the repository at *path*.

        Raises:
            ValueError: If *path* is not a git repository.
        """
        try:
            return cls(Repo(str(path)))
        except NotGitRepository:
            raise ValueError(f"Not a git repository: {path}") from None

    @property
    def object_store(self) -> BaseObjectStore:
        return self.repo.object_store

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    def remote_url(self, remote: str = "origin") -> str | None:
        """Configured URL of *remote*, or ``None`` if unset."""
        config = self.repo.get_config()
        try:
            url = config.get((b"remote", remote.encode("utf-8")), b"url")
        except KeyError:
            return None
        return url.decode("utf-8") if url else None

    def fetch_latest(self, remote: str = "origin") -> None:
        """Fetch *remote* into its remote-tracking refs.

        Raises:
            FetchError: On network, protocol or authentication failures.
        """
        url = self.remote_url(remote)
        logger.debug("Fetching %s (%s)", remote, url or "no url")
        try:
            porcelain.fetch(self.repo, remote_location=remote)
        except (GitProtocolError, porcelain.Error, OSError) as exc:
            raise FetchError(
                f"Failed to fetch {remote} ({url or 'unknown url'}): {exc}",
                hint=transport_hint(url),
            ) from exc

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def resolve_ref(self, ref: str) -> str:
        """Resolve a ref name (or hex id) to a commit id.

        Raises:
            PreconditionError: If the ref does not exist.
        """
        if is_object_id(ref) and to_object_id(ref) in self.object_store:
            return ref
        try:
            return from_object_id(self.repo.refs[ref.encode("utf-8")])
        except KeyError:
            raise PreconditionError(f"Unknown ref: {ref}") from None

    def get_commit(self, sha: str) -> CommitInfo:
        try:
            commit = self.object_store[to_object_id(sha)]
        except KeyError:
            raise PreconditionError(f"Unknown commit: {sha}") from None
        if not isinstance(commit, Commit):
            raise PreconditionError(f"Object {sha} is not a commit")
        return CommitInfo(
            sha=sha,
            parents=tuple(from_object_id(p) for p in commit.parents),
            tree=from_object_id(commit.tree),
            message=commit.message.decode("utf-8", errors="replace"),
            author=commit.author.decode("utf-8", errors="replace"),
            timestamp=commit.author_time,
        )

    def walk_parents(self, sha: str) -> Iterator[CommitInfo]:
        """Breadth-first walk over *sha* and all of its ancestors.

        Each commit is yielded once, starting with *sha* itself.
        """
        seen = {sha}
        queue = deque([sha])
        while queue:
            info = self.get_commit(queue.popleft())
            yield info
            for parent in info.parents:
                if parent not in seen:
                    seen.add(parent)
                    queue.append(parent)

    def create_commit(
        self,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: str,
        author_time: int | None = None,
        timezone: str = "+0000",
    ) -> str:
        """Write a commit object and return its id (refs are not touched)."""
        commit = Commit()
        commit.tree = to_object_id(tree)
        commit.parents = [to_object_id(p) for p in parents]
        commit.author = commit.committer = author.encode("utf-8")
        commit.commit_time = commit.author_time = (
            int(time.time()) if author_time is None else int(author_time)
        )
        commit.commit_timezone = commit.author_timezone = parse_timezone(
            timezone.encode("ascii")
        )[0]
        commit.encoding = b"UTF-8"
        commit.message = message.encode("utf-8")
        self.object_store.add_object(commit)
        return from_object_id(commit.id)

    def set_ref(self, ref: str, sha: str) -> None:
        self.repo.refs[ref.encode("utf-8")] = to_object_id(sha)
        logger.debug("Set %s -> %s", ref, sha[:8])

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def read_blob(self, sha: str) -> bytes:
        blob = self.object_store[to_object_id(sha)]
        if not isinstance(blob, Blob):
            raise PreconditionError(f"Object {sha} is not a blob")
        return blob.as_raw_string()

    def add_blob(self, data: bytes) -> str:
        blob = Blob.from_string(data)
        self.object_store.add_object(blob)
        return from_object_id(blob.id)
