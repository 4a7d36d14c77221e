"""SQLite persistence backend with a local change feed."""
from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from ..errors import GenealogyError, NotFoundError, PermissionDeniedError, TransientIOError
from ..models import ChangeEvent, ChangeKind, Event, Member, Snapshot, Table, new_id, parse_record
from .feed import LocalChangeFeed

logger = structlog.get_logger(__name__)

_COLUMNS: dict[Table, tuple[str, ...]] = {
    Table.MEMBERS: (
        "id", "scope", "name", "gender", "birth", "avatar",
        "generation", "father_id", "mother_id", "is_spouse_of",
    ),
    Table.EVENTS: ("id", "scope", "content", "date", "related_member_ids"),
}


class SQLiteBackend(LocalChangeFeed):
    """SQLite file holding the ``members`` and ``events`` tables of every scope.

    Responsibilities:
    - ``fetch_all`` per scope, events newest first
    - insert/update/delete returning the stored row
    - publishing each committed change to local subscribers

    Args:
        db_path: Database file (created with its parent directory).
        read_only_tables: Tables whose writes fail with PermissionDeniedError,
            standing in for a row-level write policy.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        read_only_tables: set[Table] | None = None,
        hold_changes: bool = False,
    ) -> None:
        super().__init__(hold_changes=hold_changes)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.read_only_tables: set[Table] = set(read_only_tables or ())
        self._init_schema()

    @contextmanager
    def _get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.OperationalError as e:
            raise TransientIOError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise TransientIOError(f"Database busy or unavailable: {e}") from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_conn() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS members (
                    id TEXT PRIMARY KEY,
                    scope TEXT NOT NULL,
                    name TEXT NOT NULL,
                    gender TEXT NOT NULL,
                    birth TEXT,
                    avatar TEXT,
                    generation INTEGER NOT NULL,
                    father_id TEXT,
                    mother_id TEXT,
                    is_spouse_of TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_members_scope ON members(scope);
                CREATE INDEX IF NOT EXISTS idx_members_generation ON members(scope, generation);

                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    scope TEXT NOT NULL,
                    content TEXT NOT NULL,
                    date TEXT NOT NULL,
                    related_member_ids TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_events_scope_date ON events(scope, date);
                """
            )
            conn.commit()

    # ------------------------------------------------------------ row codec

    @staticmethod
    def _to_row(table: Table, record: dict[str, Any]) -> tuple[Any, ...]:
        row = dict(record)
        if table == Table.EVENTS:
            row["related_member_ids"] = ",".join(row.get("related_member_ids") or [])
        return tuple(row.get(column) for column in _COLUMNS[table])

    @staticmethod
    def _from_row(table: Table, row: sqlite3.Row) -> dict[str, Any]:
        return parse_record(table, {column: row[column] for column in _COLUMNS[table]}).to_record()

    def _fetch_row(self, conn: sqlite3.Connection, table: Table, entity_id: str) -> sqlite3.Row | None:
        return conn.execute(f"SELECT * FROM {table.value} WHERE id = ?", (entity_id,)).fetchone()

    # ---------------------------------------------------------- backend API
    # Queries run in a worker thread; change notifications are published back
    # on the event loop, after the commit.

    async def fetch_all(self, scope: str) -> Snapshot:
        return await asyncio.to_thread(self._fetch_all, scope)

    async def insert(self, table: Table, record: dict[str, Any]) -> dict[str, Any]:
        self._check_write(table)
        stored = await asyncio.to_thread(self._insert, table, record)
        self._notify(table, ChangeKind.INSERT, stored)
        return stored

    async def update(self, table: Table, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        self._check_write(table)
        stored = await asyncio.to_thread(self._update, table, entity_id, patch)
        self._notify(table, ChangeKind.UPDATE, stored)
        return stored

    async def delete(self, table: Table, entity_id: str) -> None:
        self._check_write(table)
        scope = await asyncio.to_thread(self._delete, table, entity_id)
        self._notify(table, ChangeKind.DELETE, {"id": entity_id, "scope": scope})

    # ------------------------------------------------------- blocking calls

    def _fetch_all(self, scope: str) -> Snapshot:
        with self._get_conn() as conn:
            member_rows = conn.execute(
                "SELECT * FROM members WHERE scope = ? ORDER BY created_at, rowid", (scope,)
            ).fetchall()
            event_rows = conn.execute(
                "SELECT * FROM events WHERE scope = ? ORDER BY date DESC, rowid", (scope,)
            ).fetchall()
        return Snapshot(
            members=[Member.model_validate(self._from_row(Table.MEMBERS, r)) for r in member_rows],
            events=[Event.model_validate(self._from_row(Table.EVENTS, r)) for r in event_rows],
        )

    def _insert(self, table: Table, record: dict[str, Any]) -> dict[str, Any]:
        stored = parse_record(table, {**record, "id": record.get("id") or new_id()}).to_record()
        columns = _COLUMNS[table]
        placeholders = ", ".join("?" for _ in columns)
        with self._get_conn() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {table.value} ({', '.join(columns)}) VALUES ({placeholders})",
                    self._to_row(table, stored),
                )
            except sqlite3.IntegrityError as e:
                raise GenealogyError(
                    f"Could not insert {table.value} {stored['id']}: {e}",
                    table=table.value,
                    entity_id=stored["id"],
                ) from e
            conn.commit()
        return stored

    def _update(self, table: Table, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        columns = _COLUMNS[table]
        with self._get_conn() as conn:
            row = self._fetch_row(conn, table, entity_id)
            if row is None:
                raise NotFoundError(f"No {table.value} record {entity_id}", table=table.value, entity_id=entity_id)
            stored = parse_record(
                table, {**self._from_row(table, row), **patch, "id": entity_id}
            ).to_record()
            assignments = ", ".join(f"{column} = ?" for column in columns[1:])
            conn.execute(
                f"UPDATE {table.value} SET {assignments} WHERE id = ?",
                (*self._to_row(table, stored)[1:], entity_id),
            )
            conn.commit()
        return stored

    def _delete(self, table: Table, entity_id: str) -> str:
        """Delete a row and return the scope it belonged to."""
        with self._get_conn() as conn:
            row = self._fetch_row(conn, table, entity_id)
            if row is None:
                raise NotFoundError(f"No {table.value} record {entity_id}", table=table.value, entity_id=entity_id)
            conn.execute(f"DELETE FROM {table.value} WHERE id = ?", (entity_id,))
            conn.commit()
        return row["scope"]

    def _check_write(self, table: Table) -> None:
        if table in self.read_only_tables:
            raise PermissionDeniedError(f"Write to {table.value} denied", table=table.value)

    def _notify(self, table: Table, kind: ChangeKind, record: dict[str, Any]) -> None:
        logger.debug("sqlite_backend.change", table=table.value, kind=kind.value, entity_id=record.get("id"))
        self.publish(record.get("scope") or "", ChangeEvent(table=table, kind=kind, record=record))
