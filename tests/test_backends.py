"""Tests for the reference persistence backends and local stores."""
from __future__ import annotations

import datetime as dt
import threading
from pathlib import Path

import pytest

from genealogy_engine.backends import (
    InMemoryBackend,
    JsonFileLocalStore,
    MemoryLocalStore,
    SQLiteBackend,
    backend_from_config,
)
from genealogy_engine.config import EngineConfig
from genealogy_engine.errors import (
    ConfigurationError,
    GenealogyError,
    NotFoundError,
    PermissionDeniedError,
)
from genealogy_engine.models import ChangeKind, Event, Member, Table
from genealogy_engine.ports import ChangeFeed, LocalStore, PersistenceBackend
from genealogy_engine.session import GenealogySession

SCOPE = "family"


def _member_record(member_id: str, scope: str = SCOPE, **kwargs) -> dict:
    return Member(id=member_id, name=kwargs.pop("name", member_id), scope=scope, **kwargs).to_record()


@pytest.fixture
def sqlite_backend(tmp_path: Path) -> SQLiteBackend:
    return SQLiteBackend(tmp_path / "db" / "genealogy.db")


class TestProtocols:
    """Reference implementations satisfy the collaborator interfaces."""

    def test_backends_are_backends_and_feeds(self, sqlite_backend):
        for backend in (InMemoryBackend(), sqlite_backend):
            assert isinstance(backend, PersistenceBackend)
            assert isinstance(backend, ChangeFeed)

    def test_local_stores(self, tmp_path):
        assert isinstance(MemoryLocalStore(), LocalStore)
        assert isinstance(JsonFileLocalStore(tmp_path / "state.json"), LocalStore)

    def test_backend_from_config(self, tmp_path):
        memory = backend_from_config(EngineConfig(backend="memory"))
        sqlite = backend_from_config(EngineConfig(backend="sqlite", db_path=tmp_path / "g.db"))

        assert isinstance(memory, InMemoryBackend)
        assert isinstance(sqlite, SQLiteBackend)


class TestSQLiteBackend:
    """SQLite file backend."""

    @pytest.mark.asyncio
    async def test_insert_and_fetch(self, sqlite_backend):
        await sqlite_backend.insert(Table.MEMBERS, _member_record("r", birth="1900"))
        await sqlite_backend.insert(Table.MEMBERS, _member_record("c", generation=2, father_id="r"))
        await sqlite_backend.insert(Table.EVENTS, {
            "id": "e1", "content": "Wedding", "date": "1925-06-01",
            "related_member_ids": ["r", "c"], "scope": SCOPE,
        })
        await sqlite_backend.insert(Table.EVENTS, {
            "id": "e2", "content": "Birth", "date": "1930-01-01", "scope": SCOPE,
        })

        snapshot = await sqlite_backend.fetch_all(SCOPE)

        assert [m.id for m in snapshot.members] == ["r", "c"]
        assert snapshot.members[0].birth == "1900"
        assert snapshot.members[1].father_id == "r"
        assert [e.id for e in snapshot.events] == ["e2", "e1"]
        assert snapshot.events[1].related_member_ids == ["r", "c"]
        assert snapshot.events[1].date == dt.date(1925, 6, 1)

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, sqlite_backend):
        record = _member_record("x")
        record["id"] = None

        stored = await sqlite_backend.insert(Table.MEMBERS, record)

        assert stored["id"]

    @pytest.mark.asyncio
    async def test_scopes_isolated(self, sqlite_backend):
        await sqlite_backend.insert(Table.MEMBERS, _member_record("a"))
        await sqlite_backend.insert(Table.MEMBERS, _member_record("b", scope="other"))

        snapshot = await sqlite_backend.fetch_all(SCOPE)

        assert [m.id for m in snapshot.members] == ["a"]

    @pytest.mark.asyncio
    async def test_update_merges_patch(self, sqlite_backend):
        await sqlite_backend.insert(Table.MEMBERS, _member_record("a", birth="1900"))

        stored = await sqlite_backend.update(Table.MEMBERS, "a", {"name": "Renamed"})

        assert stored["name"] == "Renamed"
        assert stored["birth"] == "1900"
        snapshot = await sqlite_backend.fetch_all(SCOPE)
        assert snapshot.members[0].name == "Renamed"

    @pytest.mark.asyncio
    async def test_missing_ids(self, sqlite_backend):
        with pytest.raises(NotFoundError):
            await sqlite_backend.update(Table.MEMBERS, "ghost", {"name": "x"})
        with pytest.raises(NotFoundError):
            await sqlite_backend.delete(Table.EVENTS, "ghost")

    @pytest.mark.asyncio
    async def test_duplicate_insert(self, sqlite_backend):
        await sqlite_backend.insert(Table.MEMBERS, _member_record("a"))

        with pytest.raises(GenealogyError):
            await sqlite_backend.insert(Table.MEMBERS, _member_record("a"))

    @pytest.mark.asyncio
    async def test_read_only_table(self, tmp_path):
        backend = SQLiteBackend(tmp_path / "g.db", read_only_tables={Table.EVENTS})

        await backend.insert(Table.MEMBERS, _member_record("a"))
        with pytest.raises(PermissionDeniedError) as exc_info:
            await backend.insert(Table.EVENTS, {"id": "e", "content": "x", "date": "2000-01-01", "scope": SCOPE})

        assert exc_info.value.table == "events"

    @pytest.mark.asyncio
    async def test_publishes_changes(self, sqlite_backend):
        seen = []
        sqlite_backend.subscribe(SCOPE, seen.append)

        await sqlite_backend.insert(Table.MEMBERS, _member_record("a"))
        await sqlite_backend.update(Table.MEMBERS, "a", {"name": "B"})
        await sqlite_backend.delete(Table.MEMBERS, "a")

        assert [c.kind for c in seen] == [ChangeKind.INSERT, ChangeKind.UPDATE, ChangeKind.DELETE]
        assert seen[2].record == {"id": "a", "scope": SCOPE}

    @pytest.mark.asyncio
    async def test_queries_run_off_the_event_loop(self, sqlite_backend, monkeypatch):
        loop_thread = threading.get_ident()
        query_threads: list[int] = []
        notify_threads: list[int] = []
        open_conn = sqlite_backend._get_conn

        def tracking_conn():
            query_threads.append(threading.get_ident())
            return open_conn()

        monkeypatch.setattr(sqlite_backend, "_get_conn", tracking_conn)
        sqlite_backend.subscribe(SCOPE, lambda change: notify_threads.append(threading.get_ident()))

        await sqlite_backend.insert(Table.MEMBERS, _member_record("a"))
        await sqlite_backend.fetch_all(SCOPE)

        assert len(query_threads) == 2
        assert loop_thread not in query_threads
        assert notify_threads == [loop_thread]

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "g.db"
        await SQLiteBackend(path).insert(Table.MEMBERS, _member_record("a"))

        snapshot = await SQLiteBackend(path).fetch_all(SCOPE)

        assert [m.id for m in snapshot.members] == ["a"]

    @pytest.mark.asyncio
    async def test_session_round_trip(self, tmp_path):
        path = tmp_path / "g.db"
        session = GenealogySession(SQLiteBackend(path), scope=SCOPE)
        await session.start()
        root = await session.add_root("Root")
        await session.add_child(root.id, "Kid")
        await session.add_event("Founded", "1900-01-01", [root.id])
        session.close()

        reopened = GenealogySession(SQLiteBackend(path), scope=SCOPE)
        await reopened.start()

        assert [m.name for m in reopened.members] == ["Root", "Kid"]
        assert reopened.events_for(root.id)[0].content == "Founded"


class TestInMemoryBackend:
    """Dict-backed backend."""

    @pytest.mark.asyncio
    async def test_denied_writes(self):
        backend = InMemoryBackend(denied_tables={Table.MEMBERS})

        with pytest.raises(PermissionDeniedError):
            await backend.insert(Table.MEMBERS, _member_record("a"))

    @pytest.mark.asyncio
    async def test_held_changes_can_be_reordered(self):
        backend = InMemoryBackend(hold_changes=True)
        seen = []
        backend.subscribe(SCOPE, seen.append)

        await backend.insert(Table.MEMBERS, _member_record("a"))
        await backend.update(Table.MEMBERS, "a", {"name": "B"})
        assert seen == []
        assert len(backend.held) == 2

        assert backend.flush(reverse=True) == 2
        assert [c.kind for c in seen] == [ChangeKind.UPDATE, ChangeKind.INSERT]

    @pytest.mark.asyncio
    async def test_seed_and_fetch_sorted(self):
        backend = InMemoryBackend()
        backend.seed(
            Event(id="old", content="a", date=dt.date(1900, 1, 1), scope=SCOPE),
            Event(id="new", content="b", date=dt.date(2000, 1, 1), scope=SCOPE),
        )

        snapshot = await backend.fetch_all(SCOPE)

        assert [e.id for e in snapshot.events] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        backend = InMemoryBackend()
        seen = []
        unsubscribe = backend.subscribe(SCOPE, seen.append)
        unsubscribe()
        unsubscribe()

        await backend.insert(Table.MEMBERS, _member_record("a"))

        assert seen == []


class TestLocalStores:
    """Device-local key/value stores."""

    def test_memory_store(self):
        store = MemoryLocalStore({"k": "v"})

        assert store.get("k") == "v"
        store.set("k", None)
        assert store.get("k") is None

    def test_json_store_persists(self, tmp_path):
        path = tmp_path / "state" / "local.json"
        JsonFileLocalStore(path).set("my_id_family", "m1")

        assert JsonFileLocalStore(path).get("my_id_family") == "m1"

    def test_json_store_removal(self, tmp_path):
        path = tmp_path / "local.json"
        store = JsonFileLocalStore(path)
        store.set("a", "1")
        store.set("a", None)

        assert JsonFileLocalStore(path).get("a") is None

    def test_json_store_missing_file(self, tmp_path):
        store = JsonFileLocalStore(tmp_path / "absent.json")

        store.set("never", None)

        assert store.get("never") is None
        assert not (tmp_path / "absent.json").exists()

    def test_json_store_invalid_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            JsonFileLocalStore(path)
