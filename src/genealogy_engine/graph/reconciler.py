"""Optimistic local writes merged with an unordered remote change feed.

The reconciler is the only writer of a :class:`GraphStore`:

- Local mutations are applied to the store immediately, then sent to the
  persistence backend. The backend's answer confirms them or rolls them
  back from the captured pre-image.
- Remote change events are merged idempotently: inserts replace in place or
  append, updates and deletes of unknown ids are no-ops. Duplicates and
  reordering therefore converge to the same state.

Only one local mutation may be in flight at a time.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ValidationError

from ..errors import GenealogyError, InvalidInputError, NotFoundError, SubmissionInProgressError
from ..models import ChangeEvent, ChangeKind, Event, Member, Mutation, Table, parse_record

if TYPE_CHECKING:
    from ..ports import PersistenceBackend
    from .store import GraphStore

logger = structlog.get_logger(__name__)


class MutationStatus(str, Enum):
    """Lifecycle of a local mutation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SUPERSEDED = "superseded"  # remote change for the same entity won


@dataclass
class PendingMutation:
    """A local mutation and everything needed to confirm or undo it."""

    mutation: Mutation
    status: MutationStatus = MutationStatus.PENDING
    optimistic: Member | Event | None = None
    pre_image: Member | Event | None = None
    pre_index: int | None = None
    stored: Member | Event | None = None
    error: GenealogyError | None = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    resolved_at: datetime | None = None

    @property
    def entity_id(self) -> str:
        return self.mutation.entity_id

    def matches(self, change: ChangeEvent) -> bool:
        return change.table == self.mutation.table and change.entity_id == self.entity_id

    def resolve(self, status: MutationStatus) -> None:
        self.status = status
        self.resolved_at = datetime.now(UTC)


class ReconcilerStats(BaseModel):
    """Counters describing what the reconciler has done so far."""

    local_submitted: int = 0
    confirmed: int = 0
    failed: int = 0
    superseded: int = 0
    remote_applied: int = 0
    remote_ignored: int = 0


def _consume_result(task: asyncio.Task) -> None:
    # The submitter may have been cancelled; the outcome is logged in _commit.
    if not task.cancelled():
        task.exception()


class Reconciler:
    """Keeps a graph store consistent under local and remote mutation.

    Example:
        >>> reconciler = Reconciler(store, backend)
        >>> unsubscribe = feed.subscribe(store.scope, reconciler.apply_remote)
        >>> await reconciler.apply_local(mutation)
    """

    def __init__(self, store: GraphStore, backend: PersistenceBackend) -> None:
        """Initialize the reconciler.

        Args:
            store: Store to keep consistent (owned exclusively by this reconciler)
            backend: Persistence collaborator that local mutations are sent to
        """
        self.store = store
        self.backend = backend
        self.stats = ReconcilerStats()
        self.last_mutation: PendingMutation | None = None
        self._in_flight: PendingMutation | None = None

    @property
    def busy(self) -> bool:
        """True while a local mutation awaits the backend."""
        return self._in_flight is not None

    # ------------------------------------------------------------ local path

    async def apply_local(self, mutation: Mutation) -> PendingMutation:
        """Apply ``mutation`` optimistically and commit it to the backend.

        Cancelling the caller does not cancel the backend call: its outcome
        still confirms or rolls back the optimistic change when it lands.

        Raises:
            SubmissionInProgressError: Another local mutation is outstanding.
            NotFoundError: Update or delete of an entity the store lacks.
            InvalidInputError: The record or patch fails validation; nothing is applied.
            GenealogyError: The backend rejected the write (after rollback).
        """
        if self._in_flight is not None:
            raise SubmissionInProgressError(
                "Another change is still being saved; try again when it completes",
                table=mutation.table.value,
                entity_id=mutation.entity_id,
            )

        try:
            pending = self._apply_optimistic(mutation)
        except ValidationError as exc:
            raise InvalidInputError.from_validation(
                exc, table=mutation.table.value, entity_id=mutation.entity_id
            ) from exc
        self._in_flight = pending
        self.last_mutation = pending
        self.stats.local_submitted += 1

        task = asyncio.ensure_future(self._commit(pending))
        task.add_done_callback(_consume_result)
        return await asyncio.shield(task)

    def _apply_optimistic(self, mutation: Mutation) -> PendingMutation:
        pending = PendingMutation(mutation=mutation)
        table = mutation.table

        if mutation.kind == ChangeKind.INSERT:
            record = {**mutation.record, "id": mutation.entity_id}
            pending.optimistic = parse_record(table, record)
            self._upsert(pending.optimistic)

        elif mutation.kind == ChangeKind.UPDATE:
            existing = self._get(table, mutation.entity_id)
            if existing is None:
                raise NotFoundError(
                    f"Cannot edit {table.value} {mutation.entity_id}: it no longer exists",
                    table=table.value,
                    entity_id=mutation.entity_id,
                )
            pending.pre_image = existing
            pending.optimistic = parse_record(table, {**existing.to_record(), **mutation.record})
            self._replace(pending.optimistic)

        elif mutation.kind == ChangeKind.DELETE:
            existing = self._get(table, mutation.entity_id)
            if existing is None:
                raise NotFoundError(
                    f"Cannot delete {table.value} {mutation.entity_id}: it no longer exists",
                    table=table.value,
                    entity_id=mutation.entity_id,
                )
            pending.pre_image = existing
            if table == Table.MEMBERS:
                pending.pre_index = self.store.member_index(mutation.entity_id)
            self._remove(table, mutation.entity_id)

        logger.debug(
            "reconciler.optimistic",
            table=table.value,
            kind=mutation.kind.value,
            entity_id=mutation.entity_id,
        )
        return pending

    async def _commit(self, pending: PendingMutation) -> PendingMutation:
        mutation = pending.mutation
        try:
            stored = await self._send(mutation)
        except GenealogyError as exc:
            self._fail(pending, exc)
            if pending.status == MutationStatus.FAILED:
                raise
            return pending
        except Exception as exc:
            error = GenealogyError(
                f"Saving {mutation.table.value} {mutation.entity_id} failed: {exc}",
                table=mutation.table.value,
                entity_id=mutation.entity_id,
            )
            self._fail(pending, error)
            if pending.status == MutationStatus.FAILED:
                raise error from exc
            return pending
        else:
            self._confirm(pending, stored)
            return pending
        finally:
            self._in_flight = None

    async def _send(self, mutation: Mutation) -> dict[str, Any] | None:
        if mutation.kind == ChangeKind.INSERT:
            record = {**mutation.record, "id": mutation.entity_id}
            return await self.backend.insert(mutation.table, record)
        if mutation.kind == ChangeKind.UPDATE:
            return await self.backend.update(mutation.table, mutation.entity_id, mutation.record)
        await self.backend.delete(mutation.table, mutation.entity_id)
        return None

    def _confirm(self, pending: PendingMutation, stored: dict[str, Any] | None) -> None:
        if pending.status == MutationStatus.SUPERSEDED:
            logger.info(
                "reconciler.superseded_result_dropped",
                table=pending.mutation.table.value,
                entity_id=pending.entity_id,
            )
            return

        if stored is not None:
            record = parse_record(pending.mutation.table, stored)
            pending.stored = record
            if record.id != pending.entity_id:
                # Backend assigned its own id: swap the optimistic row for it.
                self._swap(pending.mutation.table, pending.entity_id, record)
            elif pending.mutation.kind == ChangeKind.INSERT:
                self._upsert(record)
            else:
                self._replace(record)

        if pending.status == MutationStatus.PENDING:
            pending.resolve(MutationStatus.CONFIRMED)
            self.stats.confirmed += 1
        logger.info(
            "reconciler.confirmed",
            table=pending.mutation.table.value,
            kind=pending.mutation.kind.value,
            entity_id=pending.entity_id,
        )

    def _fail(self, pending: PendingMutation, error: GenealogyError) -> None:
        pending.error = error
        if pending.status != MutationStatus.PENDING:
            # The change feed already told us the committed state; keep it.
            logger.warning(
                "reconciler.late_failure_ignored",
                status=pending.status.value,
                entity_id=pending.entity_id,
                error=str(error),
            )
            return

        mutation = pending.mutation
        if mutation.kind == ChangeKind.INSERT:
            self._remove(mutation.table, mutation.entity_id)
        elif mutation.kind == ChangeKind.UPDATE and pending.pre_image is not None:
            self._replace(pending.pre_image)
        elif mutation.kind == ChangeKind.DELETE and pending.pre_image is not None:
            self._restore(pending, pending.pre_image)

        pending.resolve(MutationStatus.FAILED)
        self.stats.failed += 1
        logger.warning(
            "reconciler.rolled_back",
            table=mutation.table.value,
            kind=mutation.kind.value,
            entity_id=mutation.entity_id,
            error=str(error),
        )

    # ----------------------------------------------------------- remote path

    def apply_remote(self, change: ChangeEvent) -> None:
        """Merge one change-feed notification into the store.

        Safe to call with duplicates, out of order, or for unknown ids; such
        notifications are absorbed, never raised.
        """
        scope = change.record.get("scope")
        if scope and scope != self.store.scope:
            self.stats.remote_ignored += 1
            return

        pending = self._in_flight
        restore: PendingMutation | None = None
        if pending is not None and pending.status == MutationStatus.PENDING and pending.matches(change):
            self._settle_from_remote(pending, change)
            if pending.status == MutationStatus.SUPERSEDED and pending.mutation.kind == ChangeKind.DELETE:
                restore = pending

        try:
            applied = self._merge(change, restore)
        except ValidationError as exc:
            logger.warning(
                "reconciler.remote_invalid",
                table=change.table.value,
                kind=change.kind.value,
                entity_id=change.entity_id,
                error=str(exc),
            )
            if restore is not None and restore.pre_image is not None:
                self._restore(restore, restore.pre_image)
            applied = False

        if applied:
            self.stats.remote_applied += 1
        else:
            self.stats.remote_ignored += 1

    def _settle_from_remote(self, pending: PendingMutation, change: ChangeEvent) -> None:
        is_echo = change.kind == pending.mutation.kind
        if is_echo and change.kind != ChangeKind.DELETE:
            try:
                is_echo = parse_record(change.table, change.record) == pending.optimistic
            except ValidationError:
                is_echo = False

        if is_echo:
            pending.resolve(MutationStatus.CONFIRMED)
            self.stats.confirmed += 1
            logger.info("reconciler.echo_confirmed", table=change.table.value, entity_id=pending.entity_id)
        else:
            pending.resolve(MutationStatus.SUPERSEDED)
            self.stats.superseded += 1
            logger.info(
                "reconciler.superseded",
                table=change.table.value,
                kind=change.kind.value,
                entity_id=pending.entity_id,
            )

    def _merge(self, change: ChangeEvent, restore: PendingMutation | None = None) -> bool:
        entity_id = change.entity_id
        if entity_id is None:
            return False

        if change.kind == ChangeKind.DELETE:
            return self._remove(change.table, entity_id) is not None

        record = parse_record(change.table, change.record)
        if restore is not None:
            # The optimistic delete lost: the entity lives on with the remote state.
            self._restore(restore, record)
            return True
        if change.kind == ChangeKind.INSERT:
            self._upsert(record)
            return True
        # Update before insert is possible under reordering: nothing to do yet.
        return self._replace(record)

    # --------------------------------------------------------- store helpers

    def _get(self, table: Table, entity_id: str) -> Member | Event | None:
        if table == Table.MEMBERS:
            return self.store.get_member(entity_id)
        return self.store.get_event(entity_id)

    def _upsert(self, record: Member | Event) -> bool:
        if isinstance(record, Member):
            return self.store.upsert_member(record)
        return self.store.upsert_event(record)

    def _replace(self, record: Member | Event) -> bool:
        if isinstance(record, Member):
            return self.store.replace_member(record)
        return self.store.replace_event(record)

    def _remove(self, table: Table, entity_id: str) -> Member | Event | None:
        if table == Table.MEMBERS:
            return self.store.remove_member(entity_id)
        return self.store.remove_event(entity_id)

    def _restore(self, pending: PendingMutation, record: Member | Event) -> None:
        if isinstance(record, Member):
            self.store.insert_member_at(pending.pre_index or 0, record)
        else:
            self.store.upsert_event(record)

    def _swap(self, table: Table, old_id: str, record: Member | Event) -> None:
        if table == Table.MEMBERS:
            index = self.store.member_index(old_id)
            self.store.remove_member(old_id)
            if index is None:
                self.store.upsert_member(record)
            else:
                self.store.insert_member_at(index, record)
        else:
            self.store.remove_event(old_id)
            self.store.upsert_event(record)
