"""Unified configuration schema for vcs_mirror.

Defines Pydantic models for the config file structure with dedicated
sections for the source repository, the destination workspace, mirror
policy, notifications and logging.

Usage:
    from vcs_mirror.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitConfig(BaseModel):
    """Source repository settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    repo_path: str | None = Field(
        default=None, description="Path to the local git repository"
    )
    remote: str = Field(default="origin", description="Remote to fetch")
    branch: str = Field(default="master", description="Branch to mirror")
    pending_branch: str = Field(
        default="from-svn",
        description="Branch receiving commits replayed from the destination",
    )
    commit_url_base: str | None = Field(
        default=None,
        description="Web URL of the repository, used for commit links",
    )

    model_config = {"frozen": True}


class WorkspaceConfig(BaseModel):
    """Destination working copy settings."""

    kind: Literal["svn"] = Field(default="svn", description="Workspace adapter")
    local_path: str | None = Field(
        default=None, description="Working copy directory"
    )
    repository_url: str | None = Field(
        default=None, description="Root URL of the svn repository"
    )
    server_path: str | None = Field(
        default=None,
        description="Repository-relative path of the mirrored directory (e.g. /trunk)",
    )
    svn_binary: str = Field(default="svn", description="svn executable")
    username: str | None = Field(default=None, description="svn username")
    password: str | None = Field(default=None, description="svn password")
    shelf_dir: str | None = Field(
        default=None,
        description="Directory for shelved patches (default: <working copy>/../.shelves)",
    )

    model_config = {"frozen": True}


class MirrorPolicyConfig(BaseModel):
    """Behavior of the sync loop.

    Attributes:
        poll_interval: Seconds to sleep when the source head is unchanged.
        two_way_poll_interval: Seconds between bidirectional iterations.
        history_lookback: Newest destination changesets searched for the
            checkpoint marker.
        confirm: Shelve and ask the host before each checkin.
        submit: Check in (``True``) or shelve-and-undo for review (``False``).
        use_mirror_filter: Restrict both sides to marker-selected directories.
    """

    poll_interval: int = Field(default=60, ge=1, le=86400)
    two_way_poll_interval: int = Field(default=300, ge=1, le=86400)
    history_lookback: int = Field(default=100, ge=1, le=10000)
    confirm: bool = False
    submit: bool = True
    use_mirror_filter: bool = False
    partial_marker: str = ".gitmirror"
    full_marker: str = ".gitmirrorall"
    dvcs_label: str = "git"
    cvcs_label: str = "svn"
    executable_extensions: tuple[str, ...] = (".sh",)
    line_endings: Literal["none", "crlf"] = "none"
    confirm_shelve_prefix: str = "git-to-svn"
    review_shelve_prefix: str = "ported-git-changes"
    user_map: str | None = Field(
        default=None, description="Path to a 'name;Display Name;email' map"
    )
    default_author: str = "vcs-mirror <vcs-mirror@localhost>"

    model_config = {"frozen": True}


class NotifyConfig(BaseModel):
    """Operator notification settings."""

    webhook_url: str | None = Field(
        default=None, description="URL receiving error notifications"
    )
    source: str = Field(default="vcs-mirror", description="Sender name")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(default="text")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    git: GitConfig = Field(default_factory=GitConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    mirror: MirrorPolicyConfig = Field(default_factory=MirrorPolicyConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
