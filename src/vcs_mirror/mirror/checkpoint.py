"""Checkpoint protocol embedded in commit and changeset metadata.

The last mirrored position is never stored locally.  It is recovered on
every run from destination history:

- checkins made by the mirror carry ``[git-commit-sha: <id>]``;
- commits synthesized from destination changesets carry
  ``[svn-changeset: <n>]``;
- the changeset created while onboarding a repository carries
  ``[git-commit-sha: <id> is-initial-commit]``.

Labels are configurable so existing histories (e.g. ``tfs-changeset``)
keep parsing.  Surrounding free text is ignored.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel

from vcs_mirror.core.workspace import Workspace
from vcs_mirror.errors import AmbiguousMarkerError, CheckpointNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = 100

_OBJECT_ID = r"[0-9a-f]{40}(?:[0-9a-f]{24})?"


class CommitMarker(BaseModel):
    """A parsed ``[<dvcs>-commit-sha: ...]`` token."""

    sha: str
    initial: bool = False

    model_config = {"frozen": True}


class CheckpointMarkers:
    """Format and parse the marker tokens for one DVCS/CVCS pair.

    Args:
        dvcs: Label of the source system (``git``).
        cvcs: Label of the destination system (``svn``).
    """

    def __init__(self, dvcs: str = "git", cvcs: str = "svn") -> None:
        self.dvcs = dvcs
        self.cvcs = cvcs
        self._commit_pattern = re.compile(
            rf"\[{re.escape(dvcs)}-commit-sha: (?P<sha>{_OBJECT_ID})"
            rf"(?P<initial> is-initial-commit)?\]"
        )
        self._changeset_pattern = re.compile(
            rf"\[{re.escape(cvcs)}-changeset: (?P<changeset>\d+)\]"
        )

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def commit_marker(self, sha: str, initial: bool = False) -> str:
        suffix = " is-initial-commit" if initial else ""
        return f"[{self.dvcs}-commit-sha: {sha}{suffix}]"

    def changeset_marker(self, changeset_id: int) -> str:
        return f"[{self.cvcs}-changeset: {changeset_id}]"

    def format_checkin_message(
        self,
        old_sha: str | None,
        new_sha: str,
        commit_url_base: str | None = None,
    ) -> str:
        """Build the comment for a checkin that mirrors *new_sha*."""
        lines = [
            f"Port {self.dvcs.capitalize()} -> {self.cvcs.upper()}",
            "",
            f"From: {old_sha or '(none)'}",
            f"To: {new_sha}",
            "",
            "This commit was generated automatically by vcs-mirror.",
            "",
            self.commit_marker(new_sha),
        ]
        if commit_url_base:
            lines.append(
                f"[{self.dvcs}-commit-url: {commit_url_base.rstrip('/')}/commit/{new_sha}]"
            )
        return "\n".join(lines) + "\n"

    def format_commit_message(self, comment: str, changeset_id: int) -> str:
        """Build the message for a commit synthesized from a changeset."""
        return f"{comment}\n\n{self.changeset_marker(changeset_id)}"

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_commit(self, comment: str) -> CommitMarker | None:
        """Return the commit marker in *comment*, or ``None``.

        Raises:
            AmbiguousMarkerError: If the comment names two different commits.
        """
        matches = list(self._commit_pattern.finditer(comment or ""))
        if not matches:
            return None
        shas = {m.group("sha") for m in matches}
        if len(shas) > 1:
            raise AmbiguousMarkerError(
                f"Comment carries {len(shas)} different commit markers: "
                + ", ".join(sorted(shas))
            )
        return CommitMarker(
            sha=matches[0].group("sha"),
            initial=any(m.group("initial") for m in matches),
        )

    def parse_changeset(self, message: str) -> int | None:
        match = self._changeset_pattern.search(message or "")
        if match is None:
            return None
        return int(match.group("changeset"))


def find_last_mirrored_sha(
    workspace: Workspace,
    markers: CheckpointMarkers,
    lookback: int = DEFAULT_LOOKBACK,
    path: str = "",
) -> CommitMarker:
    """Recover the newest commit marker from destination history.

    Read-only: only ``query_history`` is called.

    Raises:
        CheckpointNotFoundError: If none of the newest *lookback* entries
            carries a marker.
    """
    history = workspace.query_history(path, max_results=lookback)
    for changeset in history[:lookback]:
        marker = markers.parse_commit(changeset.comment)
        if marker is not None:
            logger.debug(
                "Checkpoint %s found in changeset %d",
                marker.sha[:8],
                changeset.changeset_id,
            )
            return marker
    raise CheckpointNotFoundError(
        f"No {markers.commit_marker('<sha>')} marker in the last {lookback} "
        f"changesets of {workspace.server_path(path)}"
    )
