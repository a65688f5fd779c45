"""Command line interface: ``todo-sync``.

Subcommands:

- ``sync``   -- run one full sync (``--dry-run``, ``--json``).
- ``status`` -- summarise the identity mapping.
- ``prune``  -- forget identity records older than N days.
- ``watch``  -- sync every N minutes until interrupted.
- ``init``   -- write a commented starter config file.

Ctrl-C during a sync asks the reconciler to stop between two tasks, so
nothing is left half-written.
"""

import argparse
import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from . import __version__
from .bootstrap import build_reconciler, load_runtime_config, resolve_state_dir
from .config_loader import ensure_config
from .errors import SyncCancelledError, TodoSyncError
from .logger import setup_logging
from .sync.engine import Reconciler
from .sync.identity import IdentityStore
from .sync.models import SyncResult
from .sync.reporter import format_status, format_sync_report, report_to_json
from .sync.storage import JsonFileStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todo-sync",
        description="Sync checkbox tasks in dated Markdown notes with Microsoft To Do",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what a sync would do
  todo-sync sync --dry-run

  # Sync and print the camelCase result
  todo-sync sync --json

  # Sync every 15 minutes
  todo-sync watch --interval 15
        """,
    )
    parser.add_argument("--vault", help="Vault root (overrides TODO_VAULT_PATH)")
    parser.add_argument("--list-name", help="Task list name (overrides TODO_LIST_NAME)")
    parser.add_argument("--state-dir", help="Identity mapping directory")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--version",
        action="version",
        version=f"todo-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sync_p = sub.add_parser("sync", help="Run one full sync")
    sync_p.add_argument("--dry-run", action="store_true", help="Preview changes without applying them")
    sync_p.add_argument("--json", action="store_true", help="Print the result as JSON")

    status_p = sub.add_parser("status", help="Show the identity mapping summary")
    status_p.add_argument("--json", action="store_true", help="Print the summary as JSON")

    prune_p = sub.add_parser("prune", help="Forget identity records older than N days")
    prune_p.add_argument("--days", type=int, required=True, help="Age threshold in days")

    watch_p = sub.add_parser("watch", help="Sync on an interval until interrupted")
    watch_p.add_argument(
        "--interval",
        type=int,
        help="Minutes between runs (default: sync.interval_minutes, 15)",
    )
    watch_p.add_argument("--dry-run", action="store_true", help="Preview only")

    sub.add_parser("init", help="Create a starter config file if none exists")
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    overrides = {}
    if args.vault:
        overrides["vault_path"] = args.vault
    if args.list_name:
        overrides["list_name"] = args.list_name
    if args.state_dir:
        overrides["state_dir"] = args.state_dir
    if args.debug:
        overrides["debug"] = True
    return overrides


def run_interruptible(reconciler: Reconciler, dry_run: bool = False) -> SyncResult:
    """Run a sync in a worker thread; Ctrl-C cancels between tasks.

    Raises:
        SyncCancelledError: If the run was interrupted.
    """
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(reconciler.run, dry_run=dry_run)
        try:
            return future.result()
        except KeyboardInterrupt:
            print("Stopping after the current task...", file=sys.stderr)
            reconciler.cancel()
            return future.result()


def _print_result(result: SyncResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report_to_json(result), indent=2))
    else:
        print(format_sync_report(result))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_sync(reconciler: Reconciler, args: argparse.Namespace) -> int:
    result = run_interruptible(reconciler, dry_run=args.dry_run)
    _print_result(result, args.json)
    return EXIT_FAILURE if result.errors else EXIT_OK


def cmd_status(identity: IdentityStore, args: argparse.Namespace) -> int:
    records = identity.records()
    if args.json:
        print(
            json.dumps(
                {
                    "identityRecords": len(records),
                    "datesTracked": len({r.note_date for r in records}),
                },
                indent=2,
            )
        )
    else:
        print(format_status(records))
    return EXIT_OK


def cmd_prune(identity: IdentityStore, args: argparse.Namespace) -> int:
    if args.days < 1:
        print("ERROR: --days must be at least 1", file=sys.stderr)
        return EXIT_FAILURE
    cutoff = date.today() - timedelta(days=args.days)
    removed = identity.prune(cutoff)
    print(f"Removed {removed} identity records last synced before {cutoff.isoformat()}.")
    return EXIT_OK


def cmd_watch(
    reconciler: Reconciler, args: argparse.Namespace, interval_minutes: int
) -> int:
    if interval_minutes < 1:
        print("ERROR: --interval must be at least 1", file=sys.stderr)
        return EXIT_FAILURE
    stop = threading.Event()
    print(
        f"Syncing every {interval_minutes} minutes. Press Ctrl-C to stop.",
        file=sys.stderr,
    )
    try:
        while not stop.is_set():
            try:
                result = run_interruptible(reconciler, dry_run=args.dry_run)
                print(format_sync_report(result), flush=True)
            except SyncCancelledError:
                raise
            except TodoSyncError as e:
                # Next tick retries; the previous run committed what it did
                logger.error("Sync failed: %s", e)
            stop.wait(interval_minutes * 60)
    except KeyboardInterrupt:
        pass
    print("Stopped.", file=sys.stderr)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "init":
        setup_logging(mode="cli", debug=args.debug, log_file=args.log_file)
        print(f"Config file: {ensure_config()}")
        return EXIT_OK

    try:
        config, unified, _ = load_runtime_config(_overrides(args))
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    setup_logging(
        mode="cli",
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
        level=unified.logging.level,
    )

    try:
        match args.command:
            case "status" | "prune":
                identity = IdentityStore(JsonFileStore(resolve_state_dir(config)))
                if args.command == "status":
                    return cmd_status(identity, args)
                return cmd_prune(identity, args)
            case "sync":
                return cmd_sync(build_reconciler(config), args)
            case "watch":
                interval = args.interval or config.interval_minutes
                return cmd_watch(build_reconciler(config), args, interval)
            case _:
                raise ValueError(f"Unknown command: {args.command}")
    except SyncCancelledError:
        print("Sync cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except (TodoSyncError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FAILURE


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)


if __name__ == "__main__":
    run()
