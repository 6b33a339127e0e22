"""Command-line interface for outlook-email.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any

import structlog
import yaml

from outlook_email import __version__
from outlook_email.config import Settings, get_settings
from outlook_email.exceptions import FolderNotFoundError, OutlookEmailError
from outlook_email.graph import FolderResolver, GraphClient, MoveResult, TokenSession
from outlook_email.graph.parsing import message_to_record
from outlook_email.models import Folder, Record
from outlook_email.offline import (
    ChangeOutcome,
    OperationKind,
    Reconciler,
    RecordOutcome,
    RecordStatus,
    build_plan,
    clear_delete,
    effective_read,
    queue_delete,
    queue_move,
    queue_read,
    toggle_processed,
)
from outlook_email.storage import RecordStore
from outlook_email.utils import format_relative_date, parse_date, parse_since, strip_html, truncate

logger = structlog.get_logger()

PULL_SOURCE_FOLDER = "Inbox"
_SENDER_WIDTH = 26
_DATE_WIDTH = 9


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        parsed = 0
    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be a positive number")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="outlook-email",
        description="Offline-first Outlook mailbox triage",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--storage-dir",
        type=Path,
        default=None,
        help="Directory of cached emails (default: settings storage_dir)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Local cache commands
    list_parser = subparsers.add_parser("list", help="List cached emails (newest first)")
    list_parser.add_argument("-l", "--limit", type=_positive_int, default=None, help="Maximum emails to list")
    list_parser.add_argument("--since", default=None, help='YYYY-MM-DD, yesterday, or "N days ago"')
    list_parser.add_argument("--folder", default=None, help="Only show emails from this folder")
    list_parser.add_argument("--all", action="store_true", help="Include emails marked as processed")

    view_parser = subparsers.add_parser("view", help="Show a single cached email")
    view_parser.add_argument("id", help="Email id, unique id prefix, or file name")
    view_mode = view_parser.add_mutually_exclusive_group()
    view_mode.add_argument("--yaml", dest="mode", action="store_const", const="yaml", help="Print all fields (default)")
    view_mode.add_argument("--text", dest="mode", action="store_const", const="text", help="Print headers and plain-text body")
    view_parser.set_defaults(mode="yaml")

    subparsers.add_parser("summary", help="Show read/unread counts by folder")

    # Offline mutation commands
    read_parser = subparsers.add_parser("read", help="Queue mark-read for an email (offline)")
    read_parser.add_argument("id", help="Email id, unique id prefix, or file name")

    unread_parser = subparsers.add_parser("unread", help="Queue mark-unread for an email (offline)")
    unread_parser.add_argument("id", help="Email id, unique id prefix, or file name")

    move_parser = subparsers.add_parser("move", help="Queue a move to a folder (offline)")
    move_parser.add_argument("id", help="Email id, unique id prefix, or file name")
    move_parser.add_argument("--folder", required=True, help="Target folder display name")

    delete_parser = subparsers.add_parser("delete", help="Queue soft-delete for an email (offline)")
    delete_parser.add_argument("id", help="Email id, unique id prefix, or file name")
    delete_parser.add_argument("-c", "--clear", action="store_true", help="Remove the deletion marker (undo)")

    processed_parser = subparsers.add_parser(
        "processed", help="Toggle the local processed flag (never synced)"
    )
    processed_parser.add_argument("id", help="Email id, unique id prefix, or file name")

    subparsers.add_parser("plan", help="Preview queued offline changes")

    apply_parser = subparsers.add_parser("apply", help="Apply queued changes to the mailbox")
    apply_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompt")

    subparsers.add_parser("clean", help="Remove all locally cached emails")

    # Online commands
    pull_parser = subparsers.add_parser("pull", help="Fetch unread inbox emails into the local cache")
    pull_parser.add_argument("--since", required=True, help='YYYY-MM-DD, yesterday, or "N days ago"')
    pull_parser.add_argument("-l", "--limit", type=_positive_int, default=None, help="Process at most N emails")
    pull_parser.add_argument(
        "--no-archive",
        action="store_true",
        help="Do not mark pulled emails read or move them to the archive folder",
    )

    search_parser = subparsers.add_parser("search", help="Search the mailbox (online)")
    search_parser.add_argument("query", help="Search string")
    search_parser.add_argument("--folder", default=None, help="Limit search to a folder")
    search_parser.add_argument("-l", "--limit", type=_positive_int, default=None, help="Max results")
    search_parser.add_argument("--since", default=None, help="Only show emails after this date (YYYY-MM-DD)")
    search_parser.add_argument("--store", action="store_true", help="Save results into the local cache")

    folders_parser = subparsers.add_parser("folders", help="Mailbox folders (online)")
    folders_sub = folders_parser.add_subparsers(dest="folders_command")
    folders_sub.add_parser("tree", help="Show all folders as a tree (default)")
    folder_list_parser = folders_sub.add_parser("list", help="List recent emails in a folder")
    folder_list_parser.add_argument("--folder", required=True, help="Folder display name")
    folder_list_parser.add_argument("-l", "--limit", type=_positive_int, default=5, help="Number of emails")

    return parser


def configure_logging(settings: Settings) -> None:
    """Send structured logs to stderr so command output on stdout stays clean."""

    level_name = "DEBUG" if settings.debug else settings.log_level.upper()
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.WARNING)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _store(args: argparse.Namespace, settings: Settings) -> RecordStore:
    return RecordStore(args.storage_dir or settings.storage_dir)


@asynccontextmanager
async def _open_client(settings: Settings) -> AsyncIterator[GraphClient]:
    session = TokenSession.from_settings(settings)
    await session.init()
    async with GraphClient(session, settings) as client:
        yield client


def _sender_short(record: Record) -> str:
    if record.from_ is None:
        return "Unknown"
    addr = record.from_.email_address
    return addr.name or addr.address or "Unknown"


def _print_record_line(index: int, width: int, record: Record) -> None:
    marker = " " if effective_read(record) else "*"
    date = format_relative_date(record.received_at).ljust(_DATE_WIDTH)
    sender = truncate(_sender_short(record), _SENDER_WIDTH).ljust(_SENDER_WIDTH)
    print(f" {marker} {str(index).rjust(width)}.  {record.short_id}  {date}  {sender}  {record.display_subject}")


# Local cache commands


def _cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    limit: int = args.limit or settings.list_default_limit
    records = _store(args, settings).load_all()

    if not args.all:
        records = [r for r in records if not (r.offline and r.offline.processed)]
    if args.folder:
        target = args.folder.strip().casefold()
        records = [r for r in records if r.folder.strip().casefold() == target]
    if args.since:
        since = parse_since(args.since)
        records = [r for r in records if r.received_at is not None and r.received_at >= since]

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    records.sort(key=lambda r: r.received_at or oldest, reverse=True)

    if not records:
        print("No emails found.")
        return 0

    shown = records[:limit]
    label = "email" if len(records) == 1 else "emails"
    header = f"{len(records)} {label}"
    if len(shown) < len(records):
        header += f" (showing {len(shown)})"
    print(f"{header}:\n")

    width = len(str(len(shown)))
    for index, record in enumerate(shown, start=1):
        _print_record_line(index, width, record)

    remaining = len(records) - len(shown)
    if remaining > 0:
        print(f"\n   ... and {remaining} more")
    return 0


def _cmd_view(args: argparse.Namespace, settings: Settings) -> int:
    record = _store(args, settings).find(args.id)

    if args.mode == "text":
        lines = [
            f"From:    {record.from_.label() if record.from_ else ''}",
            f"To:      {', '.join(r.label() for r in record.to_recipients)}",
        ]
        if record.cc_recipients:
            lines.append(f"Cc:      {', '.join(r.label() for r in record.cc_recipients)}")
        if record.bcc_recipients:
            lines.append(f"Bcc:     {', '.join(r.label() for r in record.bcc_recipients)}")
        lines.append(f"Subject: {record.display_subject}")
        lines.append(f"Date:    {record.received_at.isoformat() if record.received_at else ''}")

        body = ""
        if record.body is not None:
            if record.body.content_type.lower() == "html":
                body = strip_html(record.body.content)
            else:
                body = record.body.content.strip()
        print("\n".join(lines) + "\n\n" + body)
        return 0

    print(yaml.safe_dump(record.to_document(), sort_keys=False, allow_unicode=True, width=1_000_000))
    return 0


def _cmd_summary(args: argparse.Namespace, settings: Settings) -> int:
    counts: dict[str, dict[str, int]] = defaultdict(lambda: {"unread": 0, "read": 0, "total": 0})
    for record in _store(args, settings).load_all():
        bucket = counts[record.folder]
        bucket["total"] += 1
        bucket["read" if effective_read(record) else "unread"] += 1

    print("\nFolder Summary:")
    print("===============")
    totals = {"unread": 0, "read": 0, "total": 0}
    for folder, bucket in counts.items():
        print(f"{folder or '(unknown)'}:")
        print(f"  Unread: {bucket['unread']}")
        print(f"  Read:   {bucket['read']}")
        print(f"  Total:  {bucket['total']}")
        print()
        for key in totals:
            totals[key] += bucket[key]

    print("Overall:")
    print(f"  Unread: {totals['unread']}")
    print(f"  Read:   {totals['read']}")
    print(f"  Total:  {totals['total']}")
    return 0


# Offline mutation commands


def _cmd_read_state(args: argparse.Namespace, settings: Settings, read: bool) -> int:
    store = _store(args, settings)
    record = store.find(args.id)
    state = "read" if read else "unread"

    outcome = queue_read(record, read)
    if outcome is ChangeOutcome.UNCHANGED:
        print(f"⊘ Email already marked as {state}: {record.stored_id}")
        return 0

    store.save(record)
    if outcome is ChangeOutcome.CANCELLED:
        print(f"✓ Marked as {state} (cancelled pending change): {record.stored_id}")
    else:
        print(f"✓ Marked as {state}: {record.stored_id}")
    print(f"  {record.display_subject}")
    return 0


def _cmd_move(args: argparse.Namespace, settings: Settings) -> int:
    store = _store(args, settings)
    record = store.find(args.id)

    outcome = queue_move(record, args.folder)
    target = args.folder.strip()
    if outcome is ChangeOutcome.UNCHANGED:
        print(f"⊘ Email already queued to move to {target}: {record.stored_id}")
        return 0

    store.save(record)
    print(f"✓ Queued move: {record.stored_id}")
    print(f"  {record.display_subject}")
    print(f"  → {target}")
    return 0


def _cmd_delete(args: argparse.Namespace, settings: Settings) -> int:
    store = _store(args, settings)
    record = store.find(args.id)

    if args.clear:
        if clear_delete(record) is ChangeOutcome.UNCHANGED:
            print(f"⊘ {record.short_id} not marked for deletion")
            return 0
        store.save(record)
        print(f"✓ Cleared deletion marker: {record.short_id}")
        print(f"  {record.display_subject}")
        return 0

    if queue_delete(record) is ChangeOutcome.UNCHANGED:
        print(f"⊘ {record.short_id} already marked for deletion")
        return 0
    store.save(record)
    print(f"✓ Marked for deletion: {record.short_id}")
    print(f"  {record.display_subject}")
    print('  Run "outlook-email apply" to soft-delete from Outlook.')
    return 0


def _cmd_processed(args: argparse.Namespace, settings: Settings) -> int:
    store = _store(args, settings)
    record = store.find(args.id)

    processed = toggle_processed(record)
    store.save(record)
    print(f"✓ {record.stored_id} is now marked as {'processed' if processed else 'unprocessed'}")
    print(f"  {record.display_subject}")
    return 0


def _cmd_plan(args: argparse.Namespace, settings: Settings) -> int:
    plan = build_plan(_store(args, settings).load_all())
    if not plan.entries:
        print("No pending changes.")
        return 0

    print("Planned changes:\n")
    for entry in plan.entries:
        print(f"{'-' if entry.is_delete else '~'} {entry.short_id} / {entry.subject}")
        for op in entry.operations:
            if op.kind is OperationKind.DELETE:
                print("    delete → Deleted Items")
            elif op.kind in (OperationKind.MARK_READ, OperationKind.MARK_UNREAD):
                to_read = op.kind is OperationKind.MARK_READ
                print(f"    read: {str(entry.from_read).lower()} → {str(to_read).lower()}")
            elif op.kind is OperationKind.MOVE:
                print(f"    move: (current) → {op.folder}")
        print()

    counts = plan.counts
    print(f"Plan: {len(plan.entries)} email(s) with changes")
    print(
        f"      {counts[OperationKind.MARK_READ]} mark-read, "
        f"{counts[OperationKind.MARK_UNREAD]} mark-unread, "
        f"{counts[OperationKind.MOVE]} move, "
        f"{counts[OperationKind.DELETE]} delete"
    )
    print('\nRun "outlook-email apply" to push these changes.')
    return 0


def _confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _print_outcome(outcome: RecordOutcome) -> None:
    if outcome.status is RecordStatus.DELETED:
        print(f"🗑 Deleted: {outcome.short_id} / {outcome.subject}")
    elif outcome.status is RecordStatus.APPLIED:
        print(f"✓ Applied: {outcome.short_id} / {outcome.subject}")
    else:
        print(f"✗ Failed: {outcome.short_id} / {outcome.subject}: {outcome.error}", file=sys.stderr)


async def _cmd_apply(args: argparse.Namespace, settings: Settings) -> int:
    store = _store(args, settings)
    records = store.load_all()
    plan = build_plan(records)

    if not plan.entries:
        print("No pending changes to apply.")
        return 0

    print(f"Found {len(plan.entries)} email(s) with pending changes.\n")
    if not args.yes and not _confirm("Apply these changes? (y/N) "):
        print("Aborted.")
        return 0

    async with _open_client(settings) as client:
        report = await Reconciler(store, client).apply(records, on_outcome=_print_outcome)

    print("\nSummary:")
    print(f"  Applied: {report.applied}")
    print(f"  Errors:  {report.errors}")
    return 1 if report.errors else 0


def _cmd_clean(args: argparse.Namespace, settings: Settings) -> int:
    store = _store(args, settings)
    removed = store.clear()
    if removed == 0:
        print("Storage is already empty.")
    else:
        print(f"✓ Cleared local cache: removed {removed} item(s) from {store.storage_dir}")
    return 0


# Online commands


async def _fetch_unread_since(client: GraphClient, since: datetime) -> list[dict[str, Any]]:
    since_iso = since.strftime("%Y-%m-%dT%H:%M:%SZ")
    messages: list[dict[str, Any]] = []
    async for page in client.iter_record_pages(
        "inbox",
        filter_expr=f"isRead eq false and receivedDateTime ge {since_iso}",
        order_by="receivedDateTime desc",
    ):
        for message in page:
            received = message_to_record(message).received_at
            if received is not None and received < since:
                return messages
            messages.append(message)
    return messages


async def _archive_message(client: GraphClient, *, remote_id: str, folder_id: str) -> MoveResult:
    await client.set_read_state(remote_id, True)
    return await client.move_record(remote_id, folder_id)


async def _cmd_pull(args: argparse.Namespace, settings: Settings) -> int:
    since = parse_since(args.since)
    store = _store(args, settings)
    print(f"Fetching unread emails since: {since.date().isoformat()}")
    if args.limit:
        print(f"Processing limit: {args.limit}")

    written = skipped = processed = errors = 0
    async with _open_client(settings) as client:
        archive: Folder | None = None
        if not args.no_archive:
            archive = await client.with_auth_retry(
                lambda c: FolderResolver(c).resolve_or_create(settings.pull_archive_folder)
            )

        messages = await client.with_auth_retry(partial(_fetch_unread_since, since=since))
        if not messages:
            print("No unread emails found.")
            return 0
        print(f"Found {len(messages)} unread emails.")

        for message in messages:
            if args.limit and processed >= args.limit:
                print(f"\nReached processing limit of {args.limit}. Stopping.")
                break

            label = f"({message.get('id')})"
            try:
                record = message_to_record(message, source_folder=PULL_SOURCE_FOLDER)
                label = f"({record.stored_id}+{truncate(record.display_subject, 64)})"
                existing = store.load(record.stored_id)
                if existing is None:
                    store.save(record)
                    print(f"✓ Stored: {label}")
                    written += 1
                else:
                    record = existing
                    print(f"⊘ Skipped (exists): {label}")
                    skipped += 1

                if archive is not None and record.remote_id:
                    result = await client.with_auth_retry(
                        partial(_archive_message, remote_id=record.remote_id, folder_id=archive.id)
                    )
                    if result.new_remote_id:
                        record.remote_id = result.new_remote_id
                    if result.web_link:
                        record.web_link = result.web_link
                    record.parent_folder_id = archive.id
                    record.parent_folder_name = archive.display_name
                    store.save(record)
                    print(f"  ✓ Marked read and moved to {archive.display_name}")
                processed += 1
            except OutlookEmailError as exc:
                logger.warning("pull_message_failed", message=label, error=str(exc))
                print(f"✗ Error processing email {label}: {exc}", file=sys.stderr)
                errors += 1

    print("\nSummary:")
    print(f"  Available:  {len(messages)}")
    print(f"  Processed:  {processed}")
    print(f"  Written:    {written}")
    print(f"  Skipped:    {skipped}")
    if errors:
        print(f"  Errors:     {errors}")
    return 1 if errors else 0


async def _resolve_required(client: GraphClient, name: str) -> Folder:
    folder = await FolderResolver(client).resolve(name)
    if folder is None:
        raise FolderNotFoundError(f"Folder not found: {name}")
    return folder


async def _cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    limit: int = args.limit or settings.search_default_limit
    since = parse_date(args.since) if args.since else None
    store = _store(args, settings)

    async with _open_client(settings) as client:
        folder: Folder | None = None
        if args.folder:
            folder = await client.with_auth_retry(partial(_resolve_required, name=args.folder))

        page = await client.with_auth_retry(
            lambda c: c.get_record_page(
                folder.id if folder else None,
                search=args.query,
                page_size=min(limit, 50),
            )
        )

    records = [
        message_to_record(m, source_folder=folder.display_name if folder else None) for m in page.items
    ]
    if since is not None:
        records = [r for r in records if r.received_at is not None and r.received_at >= since]
    records = records[:limit]

    if not records:
        print(f'No results found for: "{args.query}"')
        return 0

    label = "result" if len(records) == 1 else "results"
    print(f'{len(records)} {label} for "{args.query}":\n')
    width = len(str(len(records)))
    for index, record in enumerate(records, start=1):
        _print_record_line(index, width, record)

    if args.store:
        stored = 0
        for record in records:
            # Keep existing files so queued offline changes survive.
            if store.exists(record.stored_id):
                continue
            store.save(record)
            stored += 1
        print(f"\nStored {stored} email(s) to local cache.")
    return 0


async def _collect_tree(client: GraphClient) -> list[tuple[int, Folder]]:
    return [item async for item in FolderResolver(client).walk()]


async def _recent_in_folder(client: GraphClient, *, name: str, limit: int) -> tuple[Folder, list[dict[str, Any]]]:
    folder = await _resolve_required(client, name)
    page = await client.get_record_page(
        folder.id,
        select=("subject", "from", "receivedDateTime"),
        order_by="receivedDateTime desc",
        page_size=max(1, min(limit, 50)),
    )
    return folder, page.items


async def _cmd_folder_list(args: argparse.Namespace, settings: Settings) -> int:
    async with _open_client(settings) as client:
        folder, messages = await client.with_auth_retry(
            partial(_recent_in_folder, name=args.folder, limit=args.limit)
        )

    if not messages:
        print(f"No emails found in folder: {folder.display_name}")
        return 0
    print(f"\nRecent emails in folder: {folder.display_name}")
    print(f"Showing {len(messages)} email(s):\n")
    for message in messages:
        record = message_to_record(message)
        date = record.received_at.strftime("%Y-%m-%d %H:%M:%S UTC") if record.received_at else "(No Date)"
        sender = record.from_.label() if record.from_ else "(Unknown Sender)"
        print(f"{date} | {sender}")
        print(record.display_subject)
        print()
    return 0


async def _cmd_folders(args: argparse.Namespace, settings: Settings) -> int:
    if args.folders_command == "list":
        return await _cmd_folder_list(args, settings)

    async with _open_client(settings) as client:
        tree = await client.with_auth_retry(_collect_tree)

    for depth, folder in tree:
        counts = ""
        if folder.total_item_count is not None:
            counts = f" ({folder.unread_item_count or 0}/{folder.total_item_count})"
        print(f"{'  ' * depth}{folder.display_name}{counts}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the outlook-email CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()
    configure_logging(settings)

    parser = _build_parser()
    parsed = parser.parse_args(args)
    logger.debug("outlook_email_started", version=__version__, command=parsed.command)

    try:
        if parsed.command == "list":
            return _cmd_list(parsed, settings)
        if parsed.command == "view":
            return _cmd_view(parsed, settings)
        if parsed.command == "summary":
            return _cmd_summary(parsed, settings)
        if parsed.command == "read":
            return _cmd_read_state(parsed, settings, read=True)
        if parsed.command == "unread":
            return _cmd_read_state(parsed, settings, read=False)
        if parsed.command == "move":
            return _cmd_move(parsed, settings)
        if parsed.command == "delete":
            return _cmd_delete(parsed, settings)
        if parsed.command == "processed":
            return _cmd_processed(parsed, settings)
        if parsed.command == "plan":
            return _cmd_plan(parsed, settings)
        if parsed.command == "apply":
            return asyncio.run(_cmd_apply(parsed, settings))
        if parsed.command == "clean":
            return _cmd_clean(parsed, settings)
        if parsed.command == "pull":
            return asyncio.run(_cmd_pull(parsed, settings))
        if parsed.command == "search":
            return asyncio.run(_cmd_search(parsed, settings))
        if parsed.command == "folders":
            return asyncio.run(_cmd_folders(parsed, settings))
    except OutlookEmailError as exc:
        logger.debug("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
