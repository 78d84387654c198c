"""Runtime configuration for the mirror commands.

Resolves settings from CLI args, environment variables, .env files and
the YAML config sections.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    VCS_MIRROR_REPO: Path to the local git repository
    VCS_MIRROR_WORKSPACE: Path to the svn working copy
    VCS_MIRROR_REPOSITORY_URL: Root URL of the svn repository
    VCS_MIRROR_SERVER_PATH: Repository-relative mirrored path (e.g. /trunk)
    VCS_MIRROR_REMOTE: Git remote to fetch (default: origin)
    VCS_MIRROR_BRANCH: Branch to mirror (default: master)
    VCS_MIRROR_POLL_INTERVAL: Seconds between polls (1-86400, default: 60)
    VCS_MIRROR_WEBHOOK_URL: URL receiving error notifications (optional)
    SVN_USERNAME / SVN_PASSWORD: svn credentials (optional)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .config_schema import MirrorPolicyConfig, UnifiedConfig
from .validators import (
    validate_branch_name,
    validate_repository_url,
    validate_server_path,
)

logger = logging.getLogger(__name__)


@dataclass
class Config:
    repo_path: str
    workspace_path: str
    repository_url: str
    server_path: str
    remote: str = "origin"
    branch: str = "master"
    pending_branch: str = "from-svn"
    commit_url_base: str | None = None
    svn_binary: str = "svn"
    svn_username: str | None = None
    svn_password: str | None = None
    shelf_dir: str | None = None
    webhook_url: str | None = None
    notify_source: str = "vcs-mirror"
    policy: MirrorPolicyConfig = field(default_factory=MirrorPolicyConfig)
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If a path is missing or a URL, path or name is malformed.
    """
    if not Path(config.repo_path).is_dir():
        raise ValueError(f"Git repository not found: {config.repo_path}")
    if not Path(config.workspace_path).is_dir():
        raise ValueError(f"Working copy not found: {config.workspace_path}")

    config.repository_url = config.repository_url.strip().removesuffix("/")
    for ok, message in (
        validate_repository_url(config.repository_url),
        validate_server_path(config.server_path),
        validate_branch_name(config.branch),
        validate_branch_name(config.pending_branch),
    ):
        if not ok:
            raise ValueError(message)

    if config.branch == config.pending_branch:
        raise ValueError(
            f"Pending branch '{config.pending_branch}' must differ from the mirrored branch"
        )

    if config.webhook_url and not config.webhook_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid webhook URL '{config.webhook_url}': must start with http:// or https://"
        )


def _required(name: str, value: str | None, env_var: str, yaml_key: str) -> str:
    if not value:
        raise ValueError(
            f"{name} not found. Set {env_var} environment variable, "
            f"pass it on the command line, or add '{yaml_key}' to config.yml."
        )
    return value.strip()


def load_config(
    repo: str | None = None,
    workspace: str | None = None,
    server_path: str | None = None,
    branch: str | None = None,
    confirm: bool = False,
    no_submit: bool = False,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
    validate: bool = True,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML section > built-in default

    The caller is responsible for calling ``load_dotenv()`` first.

    Args:
        repo: Override the git repository path.
        workspace: Override the working copy path.
        server_path: Override the mirrored server path.
        branch: Override the mirrored branch.
        confirm: Ask before every checkin (CLI flag).
        no_submit: Shelve for review instead of checking in (CLI flag).
        debug: Enable debug logging (CLI flag).
        unified: Parsed YAML configuration.
        validate: Run ``validate_config`` on the result.

    Raises:
        ValueError: If required settings are missing or invalid.
    """
    yaml_cfg = unified or UnifiedConfig()
    git = yaml_cfg.git
    wc = yaml_cfg.workspace

    repo_path = _required(
        "Git repository path",
        repo or os.getenv("VCS_MIRROR_REPO") or git.repo_path,
        "VCS_MIRROR_REPO",
        "git.repo_path",
    )
    workspace_path = _required(
        "Working copy path",
        workspace or os.getenv("VCS_MIRROR_WORKSPACE") or wc.local_path,
        "VCS_MIRROR_WORKSPACE",
        "workspace.local_path",
    )
    repository_url = _required(
        "Repository URL",
        os.getenv("VCS_MIRROR_REPOSITORY_URL") or wc.repository_url,
        "VCS_MIRROR_REPOSITORY_URL",
        "workspace.repository_url",
    )
    final_server_path = _required(
        "Server path",
        server_path or os.getenv("VCS_MIRROR_SERVER_PATH") or wc.server_path,
        "VCS_MIRROR_SERVER_PATH",
        "workspace.server_path",
    )

    # --- Numeric fields: env > YAML > default ---

    policy_updates: dict = {}
    poll_raw = os.getenv("VCS_MIRROR_POLL_INTERVAL")
    if poll_raw is not None:
        try:
            poll_interval = int(poll_raw)
        except ValueError:
            raise ValueError(
                f"Invalid VCS_MIRROR_POLL_INTERVAL '{poll_raw}': must be a number between 1 and 86400"
            ) from None
        if not (1 <= poll_interval <= 86400):
            raise ValueError(
                f"Invalid VCS_MIRROR_POLL_INTERVAL '{poll_raw}': must be a number between 1 and 86400"
            )
        policy_updates["poll_interval"] = poll_interval

    # --- Boolean flags: CLI > YAML ---

    if confirm:
        policy_updates["confirm"] = True
    if no_submit:
        policy_updates["submit"] = False

    policy = yaml_cfg.mirror
    if policy_updates:
        policy = MirrorPolicyConfig(**{**policy.model_dump(), **policy_updates})

    config = Config(
        repo_path=repo_path,
        workspace_path=workspace_path,
        repository_url=repository_url,
        server_path=final_server_path,
        remote=os.getenv("VCS_MIRROR_REMOTE") or git.remote,
        branch=branch or os.getenv("VCS_MIRROR_BRANCH") or git.branch,
        pending_branch=git.pending_branch,
        commit_url_base=git.commit_url_base,
        svn_binary=wc.svn_binary,
        svn_username=os.getenv("SVN_USERNAME") or wc.username,
        svn_password=os.getenv("SVN_PASSWORD") or wc.password,
        shelf_dir=wc.shelf_dir,
        webhook_url=os.getenv("VCS_MIRROR_WEBHOOK_URL") or yaml_cfg.notify.webhook_url,
        notify_source=yaml_cfg.notify.source,
        policy=policy,
        debug=debug,
    )

    if validate:
        validate_config(config)

    return config
