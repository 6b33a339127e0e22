"""Offline change queue.

Mutation commands never talk to the mailbox. They record intent on the cached
record under ``offline.pending`` and `apply` replays it later. The rules here
keep the queue minimal:

- a read-state change equal to the current effective state is a no-op;
- flipping back to the last synced read state cancels the pending change;
- only the most recent queued move survives;
- delete is a marker, set once and cleared explicitly.

Every mutation ends with `normalize_offline`, the only place empty
``pending``/``offline`` structures are pruned.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from outlook_email.exceptions import ValidationError
from outlook_email.models import OfflineState, PendingChanges, Record


class ChangeOutcome(str, Enum):
    """What a queue operation did to the record."""

    QUEUED = "queued"
    CANCELLED = "cancelled"
    CLEARED = "cleared"
    UNCHANGED = "unchanged"


def normalize_offline(record: Record) -> Record:
    """Prune empty offline structures in place and return the record."""

    offline = record.offline
    if offline is None:
        return record

    pending = offline.pending
    if pending is not None:
        if not pending.move_to_folder:
            pending.move_to_folder = None
        if not pending.delete:
            pending.delete = None
        if pending.is_empty():
            offline.pending = None

    if not offline.processed:
        offline.processed = None

    if offline.is_empty():
        record.offline = None
    return record


def _pending(record: Record) -> PendingChanges:
    if record.offline is None:
        record.offline = OfflineState()
    if record.offline.pending is None:
        record.offline.pending = PendingChanges()
    return record.offline.pending


def current_pending(record: Record) -> PendingChanges | None:
    """Return the queued changes, or None when nothing is queued."""

    offline = record.offline
    if offline is None or offline.pending is None or offline.pending.is_empty():
        return None
    return offline.pending


def has_pending(record: Record) -> bool:
    return current_pending(record) is not None


def synced_read(record: Record) -> bool:
    """Read state last confirmed with the mailbox (absent means unread)."""

    return record.offline is not None and record.offline.read is True


def effective_read(record: Record) -> bool:
    """Current read state as the user sees it: pending intent first, then synced state."""

    offline = record.offline
    if offline is not None and offline.pending is not None and offline.pending.read is not None:
        return offline.pending.read
    return synced_read(record)


def queue_read(record: Record, read: bool) -> ChangeOutcome:
    """Queue a read-state change.

    Returns UNCHANGED when the record already has that effective state, and
    CANCELLED when the request returns the record to its synced state.
    """

    if effective_read(record) == read:
        return ChangeOutcome.UNCHANGED

    pending = _pending(record)
    pending.read = read
    outcome = ChangeOutcome.QUEUED
    if pending.read == synced_read(record):
        pending.read = None
        outcome = ChangeOutcome.CANCELLED

    normalize_offline(record)
    return outcome


def queue_move(record: Record, folder_name: str) -> ChangeOutcome:
    """Queue a move to the folder with the given display name.

    Raises:
        ValidationError: If the folder name is blank.
    """

    target = (folder_name or "").strip()
    if not target:
        raise ValidationError("Folder name is required")

    queued = current_pending(record)
    current = queued.move_to_folder if queued is not None else None
    if current and current.strip().casefold() == target.casefold():
        return ChangeOutcome.UNCHANGED

    _pending(record).move_to_folder = target
    normalize_offline(record)
    return ChangeOutcome.QUEUED


def queue_delete(record: Record) -> ChangeOutcome:
    queued = current_pending(record)
    if queued is not None and queued.delete:
        return ChangeOutcome.UNCHANGED

    _pending(record).delete = True
    normalize_offline(record)
    return ChangeOutcome.QUEUED


def clear_delete(record: Record) -> ChangeOutcome:
    """Remove the delete marker (undo), leaving other queued changes alone."""

    queued = current_pending(record)
    if queued is None or not queued.delete:
        return ChangeOutcome.UNCHANGED

    queued.delete = None
    normalize_offline(record)
    return ChangeOutcome.CLEARED


def toggle_processed(record: Record) -> bool:
    """Flip the local-only processed flag and return the new value."""

    if record.offline is None:
        record.offline = OfflineState()
    record.offline.processed = not record.offline.processed
    normalize_offline(record)
    return bool(record.offline and record.offline.processed)


def mark_synced(record: Record, *, read: bool | None, now: datetime | None = None) -> Record:
    """Record a successful apply: adopt the applied read state and drop the queue."""

    now = now or datetime.now(timezone.utc)
    if record.offline is None:
        record.offline = OfflineState()
    offline = record.offline

    if read is not None:
        offline.read = read
        offline.read_at = now if read else None

    offline.pending = None
    offline.last_sync = now
    return normalize_offline(record)
