"""Plan and apply queued offline changes.

`plan_record` is the single interpretation of a record's pending set; both the
read-only `build_plan` and `Reconciler.apply` go through it, so a plan always
lists exactly what apply will do:

- ``delete`` wins over everything else: only the delete is performed;
- otherwise a read-state change (if queued) runs before a move (if queued).

`Reconciler.apply` handles records one at a time. Each record moves through
Pending -> Applying -> Applied | Deleted | Failed; a failure is recorded for
that record only and the batch carries on.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from outlook_email.exceptions import FolderNotFoundError, OutlookEmailError, ValidationError
from outlook_email.graph.client import GraphClient, MoveResult
from outlook_email.graph.folders import FolderResolver, normalize_folder_name
from outlook_email.models import Folder, Record
from outlook_email.offline.pending import current_pending, mark_synced, synced_read
from outlook_email.storage import RecordStore

logger = structlog.get_logger()


class OperationKind(str, Enum):
    """Remote operation kinds produced by a pending set."""

    MARK_READ = "mark-read"
    MARK_UNREAD = "mark-unread"
    MOVE = "move"
    DELETE = "delete"


class RecordStatus(str, Enum):
    """Per-record reconciliation state."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass(frozen=True)
class PlannedOperation:
    kind: OperationKind
    folder: str | None = None


@dataclass(frozen=True)
class RecordPlan:
    """Operations that apply would perform for one record."""

    record_id: str
    subject: str
    from_read: bool
    operations: tuple[PlannedOperation, ...]

    @property
    def short_id(self) -> str:
        return self.record_id[:6]

    @property
    def is_delete(self) -> bool:
        return any(op.kind is OperationKind.DELETE for op in self.operations)


@dataclass
class Plan:
    """Read-only projection of every queued change in the cache."""

    entries: list[RecordPlan] = field(default_factory=list)

    @property
    def counts(self) -> Counter[OperationKind]:
        return Counter(op.kind for entry in self.entries for op in entry.operations)

    def count(self, kind: OperationKind) -> int:
        return self.counts[kind]


@dataclass(frozen=True)
class RecordOutcome:
    """Result of reconciling one record."""

    record_id: str
    subject: str
    status: RecordStatus
    operations: tuple[OperationKind, ...] = ()
    error: str | None = None

    @property
    def short_id(self) -> str:
        return self.record_id[:6]


@dataclass
class ApplyReport:
    """Summary of an apply run."""

    outcomes: list[RecordOutcome] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return sum(1 for o in self.outcomes if o.status in (RecordStatus.APPLIED, RecordStatus.DELETED))

    @property
    def errors(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RecordStatus.FAILED)

    @property
    def performed(self) -> Counter[OperationKind]:
        """Operation counts of the records that were reconciled successfully."""
        return Counter(
            kind for o in self.outcomes if o.status is not RecordStatus.FAILED for kind in o.operations
        )


def plan_record(record: Record) -> RecordPlan | None:
    """Interpret a record's pending set, or return None when nothing is queued."""

    pending = current_pending(record)
    if pending is None:
        return None

    operations: list[PlannedOperation] = []
    if pending.delete:
        operations.append(PlannedOperation(OperationKind.DELETE))
    else:
        if pending.read is not None:
            kind = OperationKind.MARK_READ if pending.read else OperationKind.MARK_UNREAD
            operations.append(PlannedOperation(kind))
        target = (pending.move_to_folder or "").strip()
        if target:
            operations.append(PlannedOperation(OperationKind.MOVE, folder=target))

    if not operations:
        return None

    return RecordPlan(
        record_id=record.stored_id,
        subject=record.display_subject,
        from_read=synced_read(record),
        operations=tuple(operations),
    )


def build_plan(records: Iterable[Record]) -> Plan:
    """Plan every record with queued changes, in the given order."""

    plan = Plan()
    for record in records:
        entry = plan_record(record)
        if entry is not None:
            plan.entries.append(entry)
    return plan


class Reconciler:
    """Replays queued offline changes against the mailbox."""

    def __init__(
        self,
        store: RecordStore,
        client: GraphClient,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Create a reconciler.

        Args:
            store: Cache the records were loaded from; successful results are written back to it.
            client: Mailbox API client.
            clock: Source of sync timestamps. Defaults to the current UTC time.
        """

        self.store = store
        self.client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._folders: dict[str, Folder] = {}

    async def apply(
        self,
        records: Iterable[Record],
        on_outcome: Callable[[RecordOutcome], None] | None = None,
    ) -> ApplyReport:
        """Reconcile every record with queued changes, strictly one after another.

        Args:
            records: Records loaded from the store.
            on_outcome: Called after each record is resolved, for progress output.

        Returns:
            ApplyReport: Per-record outcomes and counts.
        """

        report = ApplyReport()
        for record in records:
            plan = plan_record(record)
            if plan is None:
                continue
            outcome = await self._apply_record(record, plan)
            report.outcomes.append(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        logger.info("apply_completed", applied=report.applied, errors=report.errors)
        return report

    async def _apply_record(self, record: Record, plan: RecordPlan) -> RecordOutcome:
        log = logger.bind(record_id=record.stored_id)
        log.debug("apply_record_state", status=RecordStatus.APPLYING.value)
        kinds = tuple(op.kind for op in plan.operations)

        try:
            if record.remote_id is None:
                raise ValidationError("Email has no remote id")

            if plan.is_delete:
                await self._delete(record.remote_id)
                self.store.delete(record.stored_id)
                log.info("apply_record_deleted")
                return RecordOutcome(record.stored_id, plan.subject, RecordStatus.DELETED, kinds)

            # Work on a copy so a failure leaves the cached record untouched.
            working = record.model_copy(deep=True)
            remote_id = record.remote_id
            read_target: bool | None = None

            for op in plan.operations:
                if op.kind in (OperationKind.MARK_READ, OperationKind.MARK_UNREAD):
                    read_target = op.kind is OperationKind.MARK_READ
                    await self._set_read(remote_id, read_target)
                elif op.kind is OperationKind.MOVE and op.folder:
                    folder, result = await self._move(remote_id, op.folder)
                    if result.new_remote_id:
                        remote_id = result.new_remote_id
                        working.remote_id = result.new_remote_id
                    if result.web_link:
                        working.web_link = result.web_link
                    working.parent_folder_id = folder.id
                    working.parent_folder_name = folder.display_name or op.folder

            mark_synced(working, read=read_target, now=self._clock())
            self.store.save(working)
        except OutlookEmailError as exc:
            log.warning("apply_record_failed", status=RecordStatus.FAILED.value, error=str(exc))
            return RecordOutcome(record.stored_id, plan.subject, RecordStatus.FAILED, kinds, str(exc))

        log.info("apply_record_applied", operations=[k.value for k in kinds])
        return RecordOutcome(record.stored_id, plan.subject, RecordStatus.APPLIED, kinds)

    async def _delete(self, remote_id: str) -> None:
        await self.client.with_auth_retry(lambda client: client.delete_record(remote_id))

    async def _set_read(self, remote_id: str, read: bool) -> None:
        await self.client.with_auth_retry(lambda client: client.set_read_state(remote_id, read))

    async def _move(self, remote_id: str, folder_name: str) -> tuple[Folder, MoveResult]:
        async def operation(client: GraphClient) -> tuple[Folder, MoveResult]:
            folder = await self._resolve_folder(client, folder_name)
            return folder, await client.move_record(remote_id, folder.id)

        return await self.client.with_auth_retry(operation)

    async def _resolve_folder(self, client: GraphClient, folder_name: str) -> Folder:
        key = normalize_folder_name(folder_name)
        folder = self._folders.get(key)
        if folder is None:
            folder = await FolderResolver(client).resolve(folder_name)
            if folder is None:
                raise FolderNotFoundError(f"Folder not found: {folder_name}")
            self._folders[key] = folder
        return folder
