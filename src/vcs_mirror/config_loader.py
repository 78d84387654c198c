"""
YAML configuration discovery for vcs_mirror.

Finds config files by convention, resolves ``!include`` directives,
interpolates environment variables and merges files with "project wins"
semantics.

Usage:
    from vcs_mirror.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "VCS_MIRROR_CONFIG"
PROJECT_CONFIG = Path(".vcs_mirror") / "config.yml"
GLOBAL_CONFIG = Path(".config") / "vcs_mirror" / "config.yml"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    * ``${VAR}`` becomes the variable's value, or ``""`` when unset.
    * ``${VAR:-default}`` falls back to *default* when VAR is unset or empty.
    * A ``${`` without a closing brace is kept as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with an ``!include`` tag.

    A subclass keeps the global ``yaml.SafeLoader`` untouched.  Each load
    carries its own include stack for cycle detection.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Resolve ``!include other.yml`` relative to the including file."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if target in include_stack:
        chain = " -> ".join(str(p) for p in [*include_stack, target])
        raise ValueError(f"Circular include detected: {chain}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml_file(target, _include_stack=[*include_stack, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def load_yaml_file(path: Path, *, _include_stack: list[Path] | None = None) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = Path(path).resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Search order:
        1. ``VCS_MIRROR_CONFIG`` env var (explicit path)
        2. ``.vcs_mirror/config.yml`` in CWD (project-level)
        3. ``~/.config/vcs_mirror/config.yml`` (user-level)
    """
    candidates: list[Path] = []
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())
    candidates.append(Path.cwd() / PROJECT_CONFIG)
    candidates.append(Path.home() / GLOBAL_CONFIG)
    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# vcs-mirror configuration
#
# Secrets can come from the environment (or a .env file):
#   SVN_USERNAME, SVN_PASSWORD, VCS_MIRROR_WEBHOOK_URL
#
# git:
#   repo_path: /srv/mirror/repo
#   remote: origin
#   branch: master
#   pending_branch: from-svn
#   commit_url_base: https://git.example.com/project
#
# workspace:
#   local_path: /srv/mirror/wc
#   repository_url: https://svn.example.com/repo
#   server_path: /trunk/project
#   username: ${SVN_USERNAME}
#   password: ${SVN_PASSWORD}
#
# mirror:
#   poll_interval: 60
#   history_lookback: 100
#   confirm: false
#   submit: true
#   use_mirror_filter: false
#   user_map: users.txt
#
# notify:
#   webhook_url: ${VCS_MIRROR_WEBHOOK_URL:-}
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists."""
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or Path.cwd() / PROJECT_CONFIG
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(explicit: Path | None = None) -> dict[str, Any]:
    """Load and merge config files into one raw dict.

    With *explicit* only that file is read.  Otherwise discovered files are
    loaded lowest precedence first and each file's top-level keys replace
    earlier ones.  Env var interpolation runs after merging.

    Returns an empty dict when no config file exists.
    """
    paths = [Path(explicit)] if explicit else discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = load_yaml_file(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
