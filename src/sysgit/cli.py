#!/usr/bin/env python3
"""sysgit command line.

Usage:
    sysgit [--settings FILE] [--repo DIR] [--config-dir DIR] [-v] <command> ...

Environment variables:
    SYSGIT_SETTINGS, SYSGIT_REPO, SYSGIT_CONFIG_DIR, SYSGIT_DRIVER_PATH,
    SYSGIT_LOG_LEVEL, SYSGIT_LOG_FILE, SYSGIT_LOG_DIR (see sysgit.config.settings)
"""
import argparse
import logging
import os
import subprocess
import sys
from dataclasses import replace
from pathlib import Path
from typing import Mapping, Optional, Sequence, TextIO

from .config.settings import Settings
from .drivers.base import Report, ResetMode
from .engine.orchestrator import Orchestrator
from .errors import SysgitError, UsageError
from .store.refs import RefStore
from .store.staging import prune_abandoned
from .utils.audit_log import setup_audit_logging
from .utils.logging_config import parse_log_level, setup_logging

logger = logging.getLogger(__name__)

EPILOG = """
Examples:
    # Show every configured branch that differs from its last commit
    sysgit status

    # Snapshot all branches below etc/ in one batch
    sysgit commit 'etc/**' -m "before upgrade"

    # Bring live state back to the last commit, discarding local changes
    sysgit reset --hard etc/nginx
"""


class CommandParser(argparse.ArgumentParser):
    """ArgumentParser reporting bad usage as UsageError instead of exiting 2.

    Exit code 2 means "nothing happened" for sysgit commands, so argparse's
    own exit status must not leak out. Sub-command parsers inherit the class.
    """

    def error(self, message: str):
        raise UsageError(f"{message} (see '{self.prog} --help')")


def build_parser() -> CommandParser:
    parser = CommandParser(
        prog="sysgit",
        description="Manage live system state as git branches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument("--settings", type=Path, help="Settings file (YAML)")
    parser.add_argument("--repo", type=Path, help="Backing bare repository")
    parser.add_argument("--config-dir", type=Path, help="Branch configuration directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    status = sub.add_parser("status", help="Compare live state with the last commit")
    status.add_argument("patterns", nargs="*", metavar="pattern")
    report = status.add_mutually_exclusive_group()
    for flag, value, text in (
        ("--quiet", Report.QUIET, "no output, exit code only"),
        ("--branches", Report.BRANCHES, "one line per branch (default)"),
        ("--list", Report.LIST, "list changed items per branch"),
        ("--diff", Report.DIFF, "show full differences"),
    ):
        report.add_argument(flag, dest="report", action="store_const", const=value, help=text)
    status.add_argument("--ref", metavar="commit", help="Compare against this commit")
    status.set_defaults(report=Report.BRANCHES, handler=cmd_status)

    commit = sub.add_parser("commit", help="Export live state as new commits")
    commit.add_argument("patterns", nargs="+", metavar="pattern")
    commit.add_argument("-m", "--message", default="", help="Commit message")
    commit.add_argument("--author", default="", help="Commit author")
    commit.add_argument("--allow-empty", action="store_true", help="Commit even without changes")
    commit.add_argument("--existing", action="store_true", help="Only branches that already exist")
    commit.add_argument("--stdout", action="store_true", help="Print '<hash> <branch>' per commit")
    commit.set_defaults(handler=cmd_commit)

    reset = sub.add_parser("reset", help="Import a commit into live state")
    reset.add_argument("patterns", nargs="+", metavar="pattern")
    modes = reset.add_mutually_exclusive_group()
    for mode in ResetMode:
        modes.add_argument(
            f"--{mode.value}", dest="mode", action="store_const", const=mode,
            help=f"{mode.value} reset",
        )
    reset.add_argument("--to", metavar="commit", help="Target commit (default: branch tip)")
    reset.add_argument("--state-only", action="store_true", help="Leave branch refs untouched")
    reset.set_defaults(mode=None, handler=cmd_reset)

    init = sub.add_parser("init", help="Create or repair the backing store and hooks")
    init.set_defaults(handler=cmd_init)

    for name, service in (("git-upload-pack", "upload-pack"), ("git-receive-pack", "receive-pack")):
        passthrough = sub.add_parser(name, help=f"Run git {service} on the store")
        passthrough.add_argument("directory", nargs="?", help="Ignored; the store is always used")
        passthrough.set_defaults(handler=cmd_passthrough, service=service)

    pre_receive = sub.add_parser("git-hook-pre-receive", help="Store pre-receive hook")
    pre_receive.set_defaults(handler=cmd_pre_receive)

    update = sub.add_parser("git-hook-update", help="Store update hook")
    update.add_argument("ref")
    update.add_argument("old")
    update.add_argument("new")
    update.set_defaults(handler=cmd_hook_update)

    help_cmd = sub.add_parser("help", help="Show help for a command")
    help_cmd.add_argument("topic", nargs="?", metavar="command")
    help_cmd.set_defaults(handler=cmd_help, subparsers=sub)

    return parser


# === Command handlers ===

def cmd_status(args, settings: Settings, out: TextIO) -> int:
    report = Orchestrator.from_settings(settings, out).status(
        args.patterns, report=args.report, ref=args.ref
    )
    return report.exit_code


def cmd_commit(args, settings: Settings, out: TextIO) -> int:
    report = Orchestrator.from_settings(settings, out).commit(
        args.patterns,
        message=args.message,
        author=args.author,
        allow_empty=args.allow_empty,
        existing_only=args.existing,
        stdout=args.stdout,
    )
    return report.exit_code


def cmd_reset(args, settings: Settings, out: TextIO) -> int:
    report = Orchestrator.from_settings(settings, out).reset(
        args.patterns, mode=args.mode, to=args.to, state_only=args.state_only
    )
    return report.exit_code


def hook_command(settings: Settings, settings_file: Optional[Path]) -> list[str]:
    """argv the generated hooks use to call back into sysgit."""
    command = [sys.executable, "-m", "sysgit"]
    if settings_file is not None:
        command += ["--settings", str(Path(settings_file).resolve())]
    command += [
        "--repo", str(Path(settings.repo_path).resolve()),
        "--config-dir", str(Path(settings.config_dir).resolve()),
    ]
    return command


def cmd_init(args, settings: Settings, out: TextIO) -> int:
    store = RefStore(settings.repo_path, settings.ref_prefix)
    created = store.init()
    store.install_hooks(hook_command(settings, args.settings))

    settings.config_dir.mkdir(parents=True, exist_ok=True)
    settings.drivers_dir.mkdir(parents=True, exist_ok=True)
    pruned = prune_abandoned(store, settings.staging_prefix)

    state = "Initialized" if created else "Reinitialized"
    print(f"{state} sysgit store in {settings.repo_path}", file=out)
    if pruned:
        print(f"Removed {len(pruned)} abandoned staging ref(s)", file=out)
    return 0


def cmd_passthrough(args, settings: Settings, out: TextIO) -> int:
    # stdin/stdout belong to the git protocol; nothing else may write there
    result = subprocess.run(
        ["git", args.service, str(settings.repo_path)],
        env=settings.base_env or None,
        check=False,
    )
    return result.returncode


def cmd_pre_receive(args, settings: Settings, out: TextIO) -> int:
    for line in sys.stdin:
        parts = line.split()
        if len(parts) == 3:
            old, new, ref = parts
            logger.debug(f"pre-receive: {ref} {old[:8]} -> {new[:8]}")
    return 0


def cmd_hook_update(args, settings: Settings, out: TextIO) -> int:
    orchestrator = Orchestrator.from_settings(settings, out)
    return orchestrator.git_hook_update(args.ref, args.old, args.new)


def cmd_help(args, settings: Settings, out: TextIO) -> int:
    parser = build_parser()
    if args.topic:
        choices = args.subparsers.choices
        if args.topic not in choices:
            print(f"sysgit help: unknown command {args.topic!r}", file=sys.stderr)
            return 1
        choices[args.topic].print_help(file=out)
    else:
        parser.print_help(file=out)
    return 0


# === Entry point ===

def load_settings(args, environ: Mapping[str, str]) -> Settings:
    settings = Settings.load(environ, args.settings)
    changes = {}
    if args.repo:
        changes["repo_path"] = args.repo
    if args.config_dir:
        changes["config_dir"] = args.config_dir
    if args.verbose:
        changes["log_level"] = "DEBUG"
    return replace(settings, **changes)


def main(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    out: Optional[TextIO] = None,
) -> int:
    """Main entry point for the sysgit CLI."""
    parser = build_parser()
    out = out if out is not None else sys.stdout
    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        print(f"sysgit: {e}", file=sys.stderr)
        return e.exit_code

    if args.command is None:
        parser.print_help(file=sys.stderr)
        return 1

    if args.command == "help":
        # Help must work without any settings or store
        return cmd_help(args, Settings(), out)

    environ = dict(os.environ if environ is None else environ)
    try:
        settings = load_settings(args, environ)
        setup_logging(
            level=parse_log_level(settings.log_level),
            log_file=settings.log_file,
        )
        if settings.log_dir:
            setup_audit_logging(settings.log_dir)
        return args.handler(args, settings, out)
    except SysgitError as e:
        print(f"sysgit {args.command}: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
