"""Entry point for ``python -m cal_sync`` and the ``cal-sync`` console script.

Uses stdlib :mod:`argparse` for argument parsing (no extra dependencies).

Subcommands:
    sync     -- Default. Run one sync cycle (``--dry-run`` to only plan it,
                ``--watch`` to repeat every ``CAL_SYNC_INTERVAL_MINUTES``).
    pending  -- List diverted deletions, removed events and queued retries
                (``--clear-queue`` drops the queued retries).
    approve  -- Execute a diverted deletion (or ``--all``).
    keep     -- Keep the calendar event of a diverted deletion (or ``--all``).
    restore  -- Print the task line of a diverted deletion for reinsertion.
    sever    -- Stop syncing a task whose event was removed remotely.
    recreate -- Recreate the event of a task removed remotely.
    log      -- Show (or ``--clear``) the persisted sync log.
    auth     -- Run the OAuth sign-in flow and cache the token.

Exit codes:
    0 -- Command completed successfully.
    1 -- An error occurred (configuration, storage, calendar, unknown ID)
         or a sync cycle finished with failed operations.
    2 -- Argument parsing error (handled by argparse).
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from cal_sync.calendar.auth import authorized_session, get_calendar_credentials
from cal_sync.calendar.batch import BatchExecutor
from cal_sync.calendar.client import GoogleCalendarClient
from cal_sync.calendar.exceptions import CalendarAPIError
from cal_sync.config import ConfigError, Settings, load_settings
from cal_sync.exceptions import NothingPendingError, SyncError
from cal_sync.log import setup_logging
from cal_sync.output import format_log, format_pending, format_summary
from cal_sync.pipeline import run_sync_cycle
from cal_sync.safety import DeletionGate
from cal_sync.store import SyncStateStore, WriterStateStore

logger = logging.getLogger(__name__)

_COMMANDS = ("sync", "pending", "approve", "keep", "restore", "sever", "recreate", "log", "auth")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="cal-sync",
        description="One-way sync of markdown tasks to Google Calendar.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- "sync" subcommand (default) ----------------------------------
    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle.")
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Print the planned operations without executing or saving them.",
    )
    sync_parser.add_argument(
        "--watch",
        action="store_true",
        default=False,
        help="Repeat the cycle every CAL_SYNC_INTERVAL_MINUTES until interrupted.",
    )
    sync_parser.add_argument(
        "--no-browser",
        action="store_true",
        default=False,
        help="Fail instead of opening the OAuth sign-in flow.",
    )

    # --- review subcommands -------------------------------------------
    pending_parser = subparsers.add_parser("pending", help="List items awaiting review.")
    pending_parser.add_argument(
        "--clear-queue",
        action="store_true",
        default=False,
        help="Drop every operation queued for retry.",
    )

    for name, help_text in (
        ("approve", "Delete the calendar event of a diverted deletion."),
        ("keep", "Keep the calendar event of a diverted deletion."),
        ("restore", "Print the task line of a diverted deletion to paste back."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        target = sub.add_mutually_exclusive_group(required=True)
        target.add_argument("task_id", nargs="?", help="Task ID shown by 'cal-sync pending'.")
        target.add_argument("--all", action="store_true", help="Apply to every pending deletion.")

    for name, help_text in (
        ("sever", "Stop syncing a task whose event was removed outside cal-sync."),
        ("recreate", "Recreate the event of a task removed outside cal-sync."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("task_id", help="Task ID shown by 'cal-sync pending'.")

    log_parser = subparsers.add_parser("log", help="Show the persisted sync log.")
    log_parser.add_argument("--clear", action="store_true", default=False, help="Empty the log.")

    subparsers.add_parser("auth", help="Sign in to Google Calendar and cache the token.")

    return parser


def _resolve_command(parser: argparse.ArgumentParser, argv: list[str]) -> argparse.Namespace:
    """Parse *argv*, inserting the implicit ``sync`` subcommand.

    ``cal-sync``, ``cal-sync --dry-run`` and ``cal-sync -v`` all run a sync.
    """
    leading = 0
    while leading < len(argv) and argv[leading] in {"-v", "-vv", "-vvv", "--verbose"}:
        leading += 1
    rest = argv[leading:]
    if not rest or (rest[0] not in _COMMANDS and rest[0] not in {"-h", "--help"}):
        argv = [*argv[:leading], "sync", *rest]
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_sync(settings: Settings, args: argparse.Namespace) -> int:
    while True:
        try:
            summary = run_sync_cycle(
                settings, dry_run=args.dry_run, interactive=not args.no_browser
            )
        except (CalendarAPIError, SyncError, FileNotFoundError) as exc:
            if not args.watch:
                raise
            logger.error("Sync cycle aborted: %s", exc)
        else:
            print(format_summary(summary))
            if not args.watch:
                return 1 if summary.has_failures else 0

        try:
            time.sleep(settings.interval_minutes * 60)
        except KeyboardInterrupt:
            return 0


def _open_store(settings: Settings) -> tuple[SyncStateStore, WriterStateStore]:
    writer = WriterStateStore.load(settings.writer_state_path, settings.writer_id)
    return SyncStateStore.load(settings.state_path, writer.writer_id), writer


def _open_gate(settings: Settings, remote: bool) -> DeletionGate:
    """Build a :class:`DeletionGate`; *remote* signs in for approvals."""
    store, writer = _open_store(settings)
    if not remote:
        return DeletionGate(store, writer=writer)
    credentials = get_calendar_credentials(settings.credentials_path, settings.token_path)
    client = GoogleCalendarClient(credentials)
    return DeletionGate(
        store,
        BatchExecutor(authorized_session(credentials)),
        calendar_names=client.calendar_names(),
        writer=writer,
    )


def _handle_pending(settings: Settings, args: argparse.Namespace) -> int:
    store, _ = _open_store(settings)
    if args.clear_queue:
        cleared = store.clear_pending_operations()
        store.append_log(f"Cleared {cleared} queued operation(s)")
        store.save()
        print(f"Cleared {cleared} queued operation(s).")
        return 0
    print(
        format_pending(
            store.pending_deletions,
            store.pending_severances,
            store.pending_operations,
            store.recently_deleted,
        )
    )
    return 0


def _handle_approve(settings: Settings, args: argparse.Namespace) -> int:
    gate = _open_gate(settings, remote=True)
    gate.prune_archive()
    outcome = gate.approve_all() if args.all else gate.approve_delete(args.task_id)
    print(f"Deleted {len(outcome.approved)} event(s); {len(outcome.failed)} still pending.")
    if outcome.created:
        print(f"Created {outcome.created} replacement event(s).")
    for error in outcome.errors:
        print(f"  [ERROR] {error}", file=sys.stderr)
    return 1 if outcome.failed else 0


def _handle_keep(settings: Settings, args: argparse.Namespace) -> int:
    gate = _open_gate(settings, remote=False)
    if args.all:
        print(f"Kept {gate.keep_all()} event(s).")
        return 0
    if not gate.keep(args.task_id):
        raise NothingPendingError(args.task_id)
    print(f"Kept event for task {args.task_id}.")
    return 0


def _handle_restore(settings: Settings, args: argparse.Namespace) -> int:
    gate = _open_gate(settings, remote=False)
    task_ids = [d.task_id for d in gate.pending] if args.all else [args.task_id]
    print("Paste these lines back into their notes:")
    for task_id in task_ids:
        print(gate.approve_restore(task_id))
    return 0


def _handle_severance(settings: Settings, args: argparse.Namespace) -> int:
    gate = _open_gate(settings, remote=False)
    done = gate.sever(args.task_id) if args.command == "sever" else gate.recreate(args.task_id)
    if not done:
        raise NothingPendingError(args.task_id)
    print(f"{args.command.capitalize()}: {args.task_id}")
    return 0


def _handle_log(settings: Settings, args: argparse.Namespace) -> int:
    store, _ = _open_store(settings)
    if args.clear:
        store.clear_log()
        store.save()
        print("Sync log cleared.")
        return 0
    print(format_log(store.sync_log))
    return 0


def _handle_auth(settings: Settings) -> int:
    get_calendar_credentials(settings.credentials_path, settings.token_path, interactive=True)
    print(f"Signed in; token cached at {settings.token_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the cal-sync CLI.

    Args:
        argv: Command-line arguments.  Defaults to ``sys.argv[1:]``
            when ``None`` (the normal case).

    Returns:
        Exit code: ``0`` on success, ``1`` on error.
    """
    parser = build_parser()
    args = _resolve_command(parser, argv if argv is not None else sys.argv[1:])

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    # --- Configure logging --------------------------------------------
    try:
        setup_logging(settings.log_level, args.verbose)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    # --- Dispatch to subcommand handler -------------------------------
    try:
        if args.command == "pending":
            return _handle_pending(settings, args)
        if args.command == "approve":
            return _handle_approve(settings, args)
        if args.command == "keep":
            return _handle_keep(settings, args)
        if args.command == "restore":
            return _handle_restore(settings, args)
        if args.command in {"sever", "recreate"}:
            return _handle_severance(settings, args)
        if args.command == "log":
            return _handle_log(settings, args)
        if args.command == "auth":
            return _handle_auth(settings)
        return _handle_sync(settings, args)
    except NothingPendingError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (CalendarAPIError, SyncError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
