"""Command line entry point for vcs-mirror.

Subcommands:
    run            Mirror the git branch into the svn working copy (loop).
    two-way        Replay svn changesets to git, then mirror git to svn (loop).
    checkpoint     Print the last mirrored commit recorded in svn history.
    shelve-commit  Shelve one commit against the working copy for review.
    init           Write a commented starter config file if none exists.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import build_config
from .core.git import GitRepository
from .core.svn import SvnWorkspace
from .errors import MirrorError
from .logger import setup_logging
from .mirror.checkpoint import CheckpointMarkers, find_last_mirrored_sha
from .mirror.engine import OneWayMirror, build_tree_builder
from .mirror.host import ConsoleHost, Host, ReportingHost, WebhookNotifier
from .mirror.reconciler import load_user_map
from .mirror.shelve import shelve_commit
from .mirror.two_way import TwoWayMirror

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_host(config: Config, verbose: bool = False) -> Host:
    """Console host, wrapped to notify a webhook when one is configured."""
    host: Host = ConsoleHost(verbose=verbose)
    if config.webhook_url:
        host = ReportingHost(
            host, WebhookNotifier(config.webhook_url, source=config.notify_source)
        )
    return host


def open_workspace(config: Config) -> SvnWorkspace:
    return SvnWorkspace(
        config.workspace_path,
        config.server_path,
        repository_url=config.repository_url,
        svn_binary=config.svn_binary,
        username=config.svn_username,
        password=config.svn_password,
        shelf_dir=config.shelf_dir,
        lock_file=config.policy.partial_marker,
    )


def open_repository(config: Config) -> GitRepository:
    return GitRepository.open(config.repo_path)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    mirror = OneWayMirror(
        repository=open_repository(config),
        workspace=open_workspace(config),
        policy=config.policy,
        host=build_host(config, args.verbose),
        remote=config.remote,
        branch=config.branch,
        commit_url_base=config.commit_url_base,
    )
    return mirror.run(max_cycles=1 if args.once else None)


def cmd_two_way(args: argparse.Namespace, config: Config) -> int:
    user_map = load_user_map(config.policy.user_map) if config.policy.user_map else {}
    mirror = TwoWayMirror(
        repository=open_repository(config),
        workspace=open_workspace(config),
        policy=config.policy,
        host=build_host(config, args.verbose),
        remote=config.remote,
        branch=config.branch,
        pending_branch=config.pending_branch,
        user_map=user_map,
        commit_url_base=config.commit_url_base,
    )
    return mirror.run(max_iterations=1 if args.once else None)


def cmd_checkpoint(args: argparse.Namespace, config: Config) -> int:
    host = build_host(config, args.verbose)
    markers = CheckpointMarkers(config.policy.dvcs_label, config.policy.cvcs_label)
    try:
        marker = find_last_mirrored_sha(
            open_workspace(config), markers, config.policy.history_lookback
        )
    except MirrorError as exc:
        host.error("%s", exc)
        return 1
    suffix = " (initial)" if marker.initial else ""
    print(f"{marker.sha}{suffix}")
    return 0


def cmd_shelve_commit(args: argparse.Namespace, config: Config) -> int:
    host = build_host(config, args.verbose)
    repository = open_repository(config)
    try:
        name = shelve_commit(
            repository,
            open_workspace(config),
            build_tree_builder(repository, config.policy),
            host,
            args.commit,
            dvcs_label=config.policy.dvcs_label,
        )
    except MirrorError as exc:
        host.error("%s", exc)
        return 1
    if name is None:
        print("Nothing to shelve: working copy already matches the commit.")
    else:
        print(name)
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    """Print the active config file, creating a starter one when none exists."""
    try:
        path = ensure_config(args.path)
    except OSError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    print(path)
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        help="Config file to read instead of the discovered ones",
    )
    common.add_argument("--repo", help="Override the git repository path (VCS_MIRROR_REPO)")
    common.add_argument(
        "--workspace", help="Override the svn working copy path (VCS_MIRROR_WORKSPACE)"
    )
    common.add_argument(
        "--server-path",
        help="Override the repository-relative mirrored path (VCS_MIRROR_SERVER_PATH)",
    )
    common.add_argument("--branch", help="Override the mirrored branch (VCS_MIRROR_BRANCH)")
    common.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output and debug logging"
    )
    common.add_argument("--log-file", help="Also write logs to this file")

    parser = argparse.ArgumentParser(
        prog="vcs-mirror",
        description="Mirror a git branch into a Subversion working copy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mirror continuously using .vcs_mirror/config.yml
  vcs-mirror run

  # One cycle, asking before every checkin
  vcs-mirror run --once --confirm

  # Shelve pending work for review instead of checking in
  vcs-mirror run --no-submit

  # Bidirectional sync
  vcs-mirror two-way

  # Where did the mirror stop?
  vcs-mirror checkpoint

  # Write .vcs_mirror/config.yml to start from
  vcs-mirror init
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"vcs-mirror version {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", parents=[common], help="One-way mirror loop")
    run_p.add_argument("--once", action="store_true", help="Run a single cycle")
    run_p.add_argument(
        "--confirm", action="store_true", help="Shelve and ask before each checkin"
    )
    run_p.add_argument(
        "--no-submit",
        action="store_true",
        help="Shelve ported changes for review instead of checking in",
    )
    run_p.set_defaults(func=cmd_run, daemon=True)

    two_p = sub.add_parser("two-way", parents=[common], help="Bidirectional loop")
    two_p.add_argument("--once", action="store_true", help="Run a single iteration")
    two_p.set_defaults(func=cmd_two_way, daemon=True)

    cp_p = sub.add_parser(
        "checkpoint", parents=[common], help="Print the last mirrored commit"
    )
    cp_p.set_defaults(func=cmd_checkpoint, daemon=False)

    sh_p = sub.add_parser(
        "shelve-commit", parents=[common], help="Shelve one commit for review"
    )
    sh_p.add_argument("commit", help="Commit id or ref to shelve")
    sh_p.set_defaults(func=cmd_shelve_commit, daemon=False)

    init_p = sub.add_parser("init", help="Write a starter config file")
    init_p.add_argument(
        "path",
        nargs="?",
        type=Path,
        help="Where to write it (default: .vcs_mirror/config.yml)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # init runs before any config exists
    if args.command == "init":
        return cmd_init(args)

    # .env first so ${VAR} interpolation in YAML can see its values
    load_dotenv()
    try:
        unified = build_config(load_hierarchical_config(args.config))
    except (OSError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    setup_logging(
        mode="daemon" if args.daemon and not getattr(args, "once", False) else "cli",
        debug=args.verbose or unified.logging.level.upper() == "DEBUG",
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
    )

    try:
        config = load_config(
            repo=args.repo,
            workspace=args.workspace,
            server_path=args.server_path,
            branch=args.branch,
            confirm=getattr(args, "confirm", False),
            no_submit=getattr(args, "no_submit", False),
            debug=args.verbose,
            unified=unified,
        )
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logger.debug("Running %s (vcs-mirror %s)", args.command, __version__)
    try:
        return args.func(args, config)
    except ValueError as exc:
        # Repository open and user map parsing report bad settings this way.
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


def run() -> None:
    """Entry point that handles errors gracefully."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
