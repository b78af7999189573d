"""CLI for inspecting and clearing saved supervisor state."""

import argparse
import logging
import sys
from importlib.metadata import version as get_version
from pathlib import Path

import yaml
from dotenv import load_dotenv
from rich.prompt import Confirm

from ralph.cli.display import render_history, render_recovery
from ralph.config import load_config
from ralph.console import (
    console,
    print_banner,
    print_error,
    print_path,
    print_success,
    print_warning,
)
from ralph.supervisor import StatePersistence, SupervisorLoop
from ralph.support import cleanup_old_logs, get_logs_dir, get_state_path
from ralph.utils import setup_logging

logger = logging.getLogger(__name__)
VERSION = get_version("ralph-supervisor")


def _create_parser() -> argparse.ArgumentParser:
    """Create and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ralph",
        description="Inspect saved Plan → Execute → Verify → Iterate state.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Settings file (default: ./ralph.yaml)",
    )
    parser.add_argument(
        "--state-file",
        type=Path,
        help=(
            "Snapshot path "
            "(default: $RALPH_STATE_FILE or .ralph/supervisor-state.json)"
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Echo log messages to the console",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("status", help="Show the saved task and its history")
    clear = subparsers.add_parser("clear", help="Delete the saved task snapshot")
    clear.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )
    return parser


# Load environment variables
load_dotenv()


def _build_loop(args: argparse.Namespace) -> SupervisorLoop:
    """Loop without handlers; enough for the recovery queries."""
    settings = load_config(args.config)
    path = args.state_file or get_state_path(
        configured=settings.supervisor.persistence_path
    )
    return SupervisorLoop(
        config=settings.supervisor, persistence=StatePersistence(path)
    )


def show_status(loop: SupervisorLoop) -> None:
    """Print the recovery panel and transition history."""
    persistence = loop.persistence
    if persistence is None:
        print_warning("State persistence is disabled")
        return
    print_path("State file", str(persistence.path))

    info = loop.get_recovery_info()
    if info is None:
        return
    console.print(render_recovery(info, stale=not loop.has_recoverable_state()))

    snapshot = persistence.load()
    if snapshot is not None and snapshot.state_history:
        console.print(render_history(snapshot.state_history))


def clear_state(loop: SupervisorLoop, *, assume_yes: bool = False) -> bool:
    """Delete the snapshot, asking first unless assume_yes."""
    persistence = loop.persistence
    if persistence is None or not persistence.exists():
        console.print("[muted]No saved state to clear[/muted]")
        return False

    if not assume_yes and not Confirm.ask(
        f"[yellow]Delete saved state at {persistence.path}?[/yellow]", default=False
    ):
        console.print("[muted]Kept saved state[/muted]")
        return False

    persistence.clear()
    print_success("Saved state cleared")
    return True


def main(argv: list[str] | None = None) -> None:
    """Run the ralph inspection CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    logs_dir = get_logs_dir()
    cleanup_old_logs(logs_dir)  # Clean old logs first
    log_path = setup_logging(logs_dir, verbose=args.verbose)
    logger.info("ralph (v%s) %s", VERSION, args.command)
    print_banner(VERSION)

    try:
        loop = _build_loop(args)
    except (ValueError, yaml.YAMLError) as e:
        logger.error("Invalid config: %s", e)
        print_error(f"Invalid config: {e}")
        sys.exit(1)

    if args.command == "status":
        show_status(loop)
    elif args.command == "clear":
        clear_state(loop, assume_yes=args.yes)

    if args.verbose:
        print_path("Debug log", str(log_path))


if __name__ == "__main__":
    main()
