"""Dict-backed persistence backend with a built-in change feed."""
from __future__ import annotations

import copy
from typing import Any

import structlog

from ..errors import GenealogyError, NotFoundError, PermissionDeniedError, TransientIOError
from ..models import ChangeEvent, ChangeKind, Event, Member, Snapshot, Table, new_id, parse_record
from .feed import LocalChangeFeed

logger = structlog.get_logger(__name__)


class InMemoryBackend(LocalChangeFeed):
    """Process-local stand-in for a hosted database and its realtime channel.

    Every committed write is published on the feed before the write call
    returns, the way a realtime channel usually echoes a change before the
    HTTP response arrives.

    Args:
        denied_tables: Tables whose writes fail with PermissionDeniedError.
        hold_changes: Queue feed notifications until ``flush()``.
    """

    def __init__(
        self,
        *,
        denied_tables: set[Table] | None = None,
        hold_changes: bool = False,
    ) -> None:
        super().__init__(hold_changes=hold_changes)
        self.denied_tables: set[Table] = set(denied_tables or ())
        self.fetch_failures = 0
        self.calls: list[tuple[str, Table | str]] = []
        self._rows: dict[Table, dict[str, dict[str, Any]]] = {table: {} for table in Table}

    def seed(self, *records: Member | Event) -> None:
        """Store records directly, without permission checks or notifications."""
        for record in records:
            table = Table.MEMBERS if isinstance(record, Member) else Table.EVENTS
            self._rows[table][record.id] = record.to_record()

    async def fetch_all(self, scope: str) -> Snapshot:
        self.calls.append(("fetch_all", scope))
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise TransientIOError(f"Could not load scope {scope!r}: backend unavailable")
        members = [Member.model_validate(r) for r in self._rows[Table.MEMBERS].values() if r.get("scope") == scope]
        events = [Event.model_validate(r) for r in self._rows[Table.EVENTS].values() if r.get("scope") == scope]
        events.sort(key=lambda e: e.date, reverse=True)
        return Snapshot(members=members, events=events)

    async def insert(self, table: Table, record: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("insert", table))
        self._check_write(table)
        stored = parse_record(table, {**record, "id": record.get("id") or new_id()}).to_record()
        if stored["id"] in self._rows[table]:
            raise GenealogyError(
                f"Duplicate key: {table.value} {stored['id']} already exists",
                table=table.value,
                entity_id=stored["id"],
            )
        self._rows[table][stored["id"]] = stored
        self._notify(table, ChangeKind.INSERT, stored)
        return copy.deepcopy(stored)

    async def update(self, table: Table, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update", table))
        self._check_write(table)
        current = self._rows[table].get(entity_id)
        if current is None:
            raise NotFoundError(f"No {table.value} record {entity_id}", table=table.value, entity_id=entity_id)
        stored = parse_record(table, {**current, **patch, "id": entity_id}).to_record()
        self._rows[table][entity_id] = stored
        self._notify(table, ChangeKind.UPDATE, stored)
        return copy.deepcopy(stored)

    async def delete(self, table: Table, entity_id: str) -> None:
        self.calls.append(("delete", table))
        self._check_write(table)
        current = self._rows[table].pop(entity_id, None)
        if current is None:
            raise NotFoundError(f"No {table.value} record {entity_id}", table=table.value, entity_id=entity_id)
        self._notify(table, ChangeKind.DELETE, {"id": entity_id, "scope": current.get("scope")})

    def _check_write(self, table: Table) -> None:
        if table in self.denied_tables:
            raise PermissionDeniedError(f"Write to {table.value} denied", table=table.value)

    def _notify(self, table: Table, kind: ChangeKind, record: dict[str, Any]) -> None:
        logger.debug("memory_backend.change", table=table.value, kind=kind.value, entity_id=record.get("id"))
        scope = record.get("scope") or ""
        self.publish(scope, ChangeEvent(table=table, kind=kind, record=copy.deepcopy(record)))
