"""Offline change queue and its reconciliation with the mailbox."""

from .pending import (
    ChangeOutcome,
    clear_delete,
    effective_read,
    has_pending,
    normalize_offline,
    queue_delete,
    queue_move,
    queue_read,
    toggle_processed,
)
from .reconcile import (
    ApplyReport,
    OperationKind,
    Plan,
    Reconciler,
    RecordOutcome,
    RecordPlan,
    RecordStatus,
    build_plan,
    plan_record,
)

__all__ = [
    "ApplyReport",
    "ChangeOutcome",
    "OperationKind",
    "Plan",
    "Reconciler",
    "RecordOutcome",
    "RecordPlan",
    "RecordStatus",
    "build_plan",
    "clear_delete",
    "effective_read",
    "has_pending",
    "normalize_offline",
    "plan_record",
    "queue_delete",
    "queue_move",
    "queue_read",
    "toggle_processed",
]
